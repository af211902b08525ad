"""
Commerce Insights Backend Package.

FastAPI service for the analytics and advisory core of an e-commerce
operation: aggregated run snapshots, channel attribution, daily trends,
delivery-health checks, recommendations, advice and digest delivery.

Subpackages:
    - api: FastAPI route handlers
    - core: Configuration, database handle, errors and dependencies
    - models: Pydantic schemas and enums
    - services: Analytics pipeline services
    - jobs: Digest dispatch and the background digest queue
    - sql: Parameterized SQL queries
"""

__version__ = "1.0.0"
