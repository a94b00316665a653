"""
Test helper utilities for cytogate testing.

This module provides reusable utilities for:
- Generating synthetic event tables and sample sets
- Writing FCS fixtures on the fly
"""
