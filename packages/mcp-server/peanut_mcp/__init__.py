"""
Peanut MCP Server - Model Context Protocol server for attribution.

Exposes the attribution engine as MCP tools:
- Reports (single model, all-model comparison)
- Conversions (detail, recalculation, recording)
- Touch recording and retention cleanup

Usage:
    # Via CLI
    peanut-mcp

    # Via Python
    from peanut_mcp import server
    server.main()

    # Storage backend
    PEANUT_STORAGE_BACKEND=bigquery PEANUT_GCP_PROJECT_ID=my-project peanut-mcp
"""

__version__ = "0.1.0"
