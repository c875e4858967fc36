"""SiteLedger Materials & Budget Service - Main Application."""

import logging.config

from fastapi import FastAPI

from siteledger.api.routes import activation, discrepancies
from siteledger.core.config import settings
from siteledger.core.database import Base, engine
from siteledger.core.logging import setup_logging
from siteledger.core.logging_config import LOGGING_CONFIG

# Configure logging before anything else
logging.config.dictConfig(LOGGING_CONFIG)
logger = setup_logging(settings.log_level)

# Create all tables on startup
logger.info("Creating database tables...")
Base.metadata.create_all(bind=engine)
logger.info("Database tables ready")

# -- OpenAPI tag metadata for Swagger grouping --
tags_metadata = [
    {
        "name": "Health",
        "description": "Service health and readiness checks.",
    },
    {
        "name": "Discrepancies",
        "description": (
            "Scan project materials for variance, loss and wastage, summarise "
            "them by severity, month and category, raise alerts and move "
            "discrepancy records through investigation to resolution."
        ),
    },
    {
        "name": "Suppliers",
        "description": "Delivery accuracy and variance cost per supplier.",
    },
    {
        "name": "Budgets",
        "description": (
            "Set project/phase budgets and project capital. The first non-zero "
            "value captures a baseline of the spending that came before it."
        ),
    },
]


app = FastAPI(
    title="SiteLedger Materials & Budget Service",
    description=(
        "## Construction Materials Discrepancy API\n\n"
        "Tracks every material line of a construction project from purchase "
        "to delivery to use, and flags the gaps.\n\n"
        "### Metrics\n"
        "| Metric | Meaning | Default threshold |\n"
        "|--------|---------|-------------------|\n"
        "| **Variance** | purchased but not delivered | > 5% or > 100 units |\n"
        "| **Loss** | delivered but not used | > 10% or > 50 units |\n"
        "| **Wastage** | purchased but not used, % of purchased | > 15% |\n\n"
        "### Severity\n"
        "- `CRITICAL` - variance and loss together, or cost impact > 10,000\n"
        "- `HIGH` - variance, or cost impact > 5,000\n"
        "- `MEDIUM` - loss or wastage with cost impact > 1,000\n"
        "- `LOW` - any other flagged material\n\n"
        "### Quick Start\n"
        "```bash\n"
        "# 1. Dashboard summary\n"
        "curl /api/v1/projects/<id>/discrepancies/summary\n\n"
        "# 2. Raise alerts for the project team\n"
        "curl -X POST /api/v1/projects/<id>/discrepancies/alerts\n\n"
        "# 3. Set a budget (captures the pre-budget baseline the first time)\n"
        'curl -X PUT /api/v1/projects/<id>/budget -H "Content-Type: application/json" '
        "-d '{\"total\": 250000}'\n"
        "```\n"
    ),
    version="1.0.0",
    openapi_tags=tags_metadata,
    docs_url="/docs",
    redoc_url="/redoc",
)

app.include_router(discrepancies.router, prefix="/api/v1", tags=["Discrepancies"])
app.include_router(activation.router, prefix="/api/v1", tags=["Budgets"])

logger.info("SiteLedger API ready - routes registered")


@app.get("/health", tags=["Health"])
def health_check():
    """Health check endpoint.

    Returns a simple JSON object confirming the service is running.
    """
    return {"status": "healthy", "service": "siteledger"}


# For running with: python -m siteledger.main
if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=settings.app_port)
