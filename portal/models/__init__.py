"""Central model registry: import all models so Alembic autodiscover works."""

from portal.database import Base  # noqa: F401

from portal.models.company import Company  # noqa: F401
from portal.models.user import User, user_companies  # noqa: F401
from portal.models.invoice import Invoice  # noqa: F401
from portal.models.credit_note import CreditNote  # noqa: F401
from portal.models.supplier import Supplier  # noqa: F401
from portal.models.stored_file import StoredFile  # noqa: F401
from portal.models.pending_registration import PendingRegistration  # noqa: F401
from portal.models.activity_log import ActivityLog  # noqa: F401
from portal.models.portal_settings import PortalSettings  # noqa: F401
from portal.models.email_template import EmailTemplate  # noqa: F401
