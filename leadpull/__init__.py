"""
leadpull package.

Responsible for:
- Collapsing users' targeting preferences into a minimal set of provider queries.
- Pulling contact records from the audience-data provider under volume caps.
- Writing them into the `leads` table, deduped per workspace by email.
- Routing new leads to interested users under daily/weekly/monthly quotas.

The engine itself is Prefect-free; the Prefect wrapper lives in
flows/segment_pull_flow.py.
"""

__version__ = "1.0.0"
