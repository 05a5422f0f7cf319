from avatar_composer.api.v1.router import router

__all__ = ["router"]
