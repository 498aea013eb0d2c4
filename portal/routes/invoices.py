from portal.routes.documents import create_document_router
from portal.schemas.document import InvoiceCreate, InvoiceUpdate
from portal.services.document_service import INVOICE

router = create_document_router(INVOICE, InvoiceCreate, InvoiceUpdate)
