"""
Tests for Oracle Gate

Organized by component:
- test_signals, test_lexicon, test_hard_skip, test_scoring: pure pieces
- test_calibration, test_cache, test_stats: stateful pieces
- test_gating: the cascade and its invariants
- test_offline, test_config_loader, test_cli: tooling
"""
