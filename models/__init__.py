from .db import db
from .user import User, Role, user_roles
from .audit_log import AuditLog
from .login_session import LoginSession
from .appointment import Appointment
from .balance import Balance, BalanceEntry
from .refund import Refund
from .therapist_payment import TherapistPayment
