from aiogram import Router

from . import (
    class_types,
    common,
    digest,
    insurances,
    members,
    plans,
    session_packs,
    staff,
    start,
)


def setup_routers() -> Router:
    """
    Aggregate and return root router for the bot.
    """

    router = Router(name="root")
    # start first: /cancel must win over any dialog state
    router.include_router(start.router)
    router.include_router(common.router)
    router.include_router(members.router)
    router.include_router(staff.router)
    router.include_router(plans.router)
    router.include_router(session_packs.router)
    router.include_router(class_types.router)
    router.include_router(insurances.router)
    router.include_router(digest.router)
    return router
