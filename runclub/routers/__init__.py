from runclub.routers.payments import router as payments_router
from runclub.routers.push import router as push_router
from runclub.routers.events import router as events_router
from runclub.routers.attendees import router as attendees_router
from runclub.routers.admin import router as admin_router

__all__ = [
    "payments_router",
    "push_router",
    "events_router",
    "attendees_router",
    "admin_router"
]
