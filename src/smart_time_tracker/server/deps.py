from typing import Annotated, cast

from fastapi import Depends, Request

from smart_time_tracker.server.app import ServerServices


def get_services(request: Request) -> ServerServices:
    return cast(ServerServices, request.app.state.services)


ServicesDep = Annotated[ServerServices, Depends(get_services)]
