from app.models.audit import AuditLog
from app.crm.models import (
	Account,
	AccountType,
	Activity,
	DisplayIdCounter,
	Human,
	HumanType,
	Opportunity,
	OpportunityHuman,
	OpportunityHumanRole,
)

__all__ = [
	"AuditLog",
	"Account",
	"AccountType",
	"Activity",
	"DisplayIdCounter",
	"Human",
	"HumanType",
	"Opportunity",
	"OpportunityHuman",
	"OpportunityHumanRole",
]
