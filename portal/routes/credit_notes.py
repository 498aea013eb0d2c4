from portal.routes.documents import create_document_router
from portal.schemas.document import CreditNoteCreate, CreditNoteUpdate
from portal.services.document_service import CREDIT_NOTE

router = create_document_router(CREDIT_NOTE, CreditNoteCreate, CreditNoteUpdate)
