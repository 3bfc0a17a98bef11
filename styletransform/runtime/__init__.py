"""Generation core: data model, retry helper, normalizer and the fallback orchestrator."""
