from fastapi import Request

from game_forge.service import GameForgeService


def get_service(request: Request) -> GameForgeService:
    return request.app.state.service
