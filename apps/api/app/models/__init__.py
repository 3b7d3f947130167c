from app.models.audit import AuditLog
from app.pipeline.models import Deal, SalesRep

__all__ = [
	"AuditLog",
	"Deal",
	"SalesRep",
]
