"""
Scholarship Pipeline - Link intake, extraction and catalog maintenance.

This package provides functionality to:
- Record scholarship links submitted from chat, commands or automation
- Fetch each link and linearize its page text
- Extract a structured scholarship record (rules first, AI fallback)
- Keep a deduplicated scholarship catalog
- Remove expired scholarships on a daily schedule
"""

__version__ = "1.0.0"
__author__ = "Scholarship Pipeline Team"
