from fastapi import APIRouter
from app.api.v1.routes.auth import router as auth_router
from app.api.v1.routes.payments import router as payments_router
from app.api.v1.routes.email import router as email_router
from app.api.v1.routes.tickets import router as tickets_router
from app.api.v1.routes.catalog import router as catalog_router
from app.api.v1.routes.vouchers import router as vouchers_router

api_router = APIRouter(prefix="/api/v1")
api_router.include_router(auth_router)
api_router.include_router(payments_router)
# before tickets: /tickets/email-stats must not match /tickets/{ticket_id}
api_router.include_router(email_router)
api_router.include_router(tickets_router)
api_router.include_router(catalog_router)
api_router.include_router(vouchers_router)
