from medledger.models.user import User
from medledger.models.clinic import Clinic, ClinicMembership
from medledger.models.medication import Medication, MedicationBatch, StockAdjustment
from medledger.models.audit_log import AuditLog
