from fastapi import Request

from app.builds.runtime import BuildRuntime


def get_runtime(request: Request) -> BuildRuntime:
    """Dependency that provides the process-wide BuildRuntime.

    Set on ``app.state.runtime`` by create_app / the lifespan. Tests pass a
    fresh runtime to create_app instead of overriding this.
    """
    return request.app.state.runtime
