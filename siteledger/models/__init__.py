"""SQLAlchemy models for the SiteLedger financial core."""

from siteledger.models.project import Project
from siteledger.models.phase import Phase
from siteledger.models.project_finances import ProjectFinances
from siteledger.models.material import Material
from siteledger.models.discrepancy import DiscrepancyRecord
from siteledger.models.user import User
from siteledger.models.notification import AuditLog, Notification

__all__ = [
    "Project",
    "Phase",
    "ProjectFinances",
    "Material",
    "DiscrepancyRecord",
    "User",
    "Notification",
    "AuditLog",
]
