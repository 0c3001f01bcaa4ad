import logging
from contextlib import asynccontextmanager
from typing import Annotated, Optional

from fastapi import FastAPI, Request, Response, Depends, HTTPException, status, Query
from fastapi.responses import JSONResponse

from chatdrop.config import get_settings
from chatdrop.entities import ChatDropMessage, PagingResult
from chatdrop.exceptions import (
    EntityNotFoundError,
    ImmutableFieldError,
    InvalidStatusTransitionError,
    PersistenceError,
)
from chatdrop.logging_utils import setup_logging, RequestLoggingMiddleware
from chatdrop.metrics import get_metrics, get_metrics_content_type
from chatdrop.repository import ChatDropMessageRepository, SqlChatDropMessageRepository
from chatdrop.schemas import ErrorResponse, HealthResponse, IngestResponse, MarkAsReadResponse
from chatdrop.storage import build_engine, build_session_factory, check_db_health, init_db

logger = logging.getLogger(__name__)


def get_repository(request: Request) -> ChatDropMessageRepository:
    """Dependency returning the repository attached to the app."""
    return request.app.state.repository


RepositoryDep = Annotated[ChatDropMessageRepository, Depends(get_repository)]


def create_app(repository: Optional[ChatDropMessageRepository] = None, engine=None) -> FastAPI:
    """
    Build the HTTP application.

    Args:
        repository: Repository to serve. When None, one is built from
            settings.DATABASE_URL and its tables are created at startup.
        engine: Engine checked by the readiness check. Defaults to the
            engine built from settings when no repository is given.
    """
    settings = get_settings()
    setup_logging(settings.LOG_LEVEL)

    if repository is None:
        engine = build_engine(settings.DATABASE_URL, echo=settings.DB_ECHO)
        repository = SqlChatDropMessageRepository(build_session_factory(engine))
        create_tables = True
    else:
        create_tables = False

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if create_tables:
            init_db(engine)
        yield
        if create_tables:
            engine.dispose()

    app = FastAPI(
        title="Chat Drop Message Store",
        description="Storage and queries for chat messages exchanged through drops",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.repository = repository
    app.state.engine = engine
    app.add_middleware(RequestLoggingMiddleware)

    _register_error_handlers(app)
    _register_routes(app)
    return app


# =============================================================================
# Error Handlers
# =============================================================================

def _register_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(EntityNotFoundError)
    async def not_found_handler(request: Request, exc: EntityNotFoundError):
        return JSONResponse(status_code=status.HTTP_404_NOT_FOUND, content={"detail": str(exc)})

    @app.exception_handler(PersistenceError)
    @app.exception_handler(ImmutableFieldError)
    @app.exception_handler(InvalidStatusTransitionError)
    async def conflict_handler(request: Request, exc: Exception):
        logger.warning(f"Rejected write: {exc}")
        return JSONResponse(status_code=status.HTTP_409_CONFLICT, content={"detail": str(exc)})


# =============================================================================
# Routes
# =============================================================================

def _register_routes(app: FastAPI) -> None:

    @app.get("/health/live", response_model=HealthResponse)
    async def health_live() -> HealthResponse:
        """Liveness check - always returns 200 once the app is running."""
        return HealthResponse(status="ok")

    @app.get("/health/ready", response_model=HealthResponse)
    def health_ready(request: Request, response: Response) -> HealthResponse:
        """Readiness check - 200 only if the DB is reachable and the schema is applied."""
        engine = request.app.state.engine
        if engine is not None and not check_db_health(engine):
            response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
            return HealthResponse(
                status="not_ready",
                reason="Database not reachable or schema not applied"
            )
        return HealthResponse(status="ready")

    @app.post(
        "/messages",
        response_model=IngestResponse,
        responses={409: {"model": ErrorResponse, "description": "Store rejected the message"}},
    )
    def ingest_message(message: ChatDropMessage, repository: RepositoryDep) -> IngestResponse:
        """
        Record a message received through or sent to a drop.

        A message identical to a stored one, id included, is acknowledged
        with duplicate=true and not written again. Retries are only
        deduplicated when the caller supplies the id; a message sent without
        one is stored as a new row every time.
        """
        created = repository.ingest(message)
        logger.info(f"Message ingested: {message.id}, duplicate: {not created}")
        return IngestResponse(duplicate=not created, id=message.id)

    @app.get(
        "/messages/{message_id}",
        response_model=ChatDropMessage,
        responses={404: {"model": ErrorResponse}},
    )
    def get_message(message_id: int, repository: RepositoryDep) -> ChatDropMessage:
        return repository.find_by_id(message_id)

    @app.put(
        "/messages/{message_id}",
        response_model=ChatDropMessage,
        responses={404: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
    )
    def replace_message(
        message_id: int, message: ChatDropMessage, repository: RepositoryDep
    ) -> ChatDropMessage:
        """Full replace of a stored message. The path id wins over any body id."""
        if message.id is not None and message.id != message_id:
            raise HTTPException(
                status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
                detail="id in body does not match path"
            )
        message.id = message_id
        repository.update(message)
        return message

    @app.delete(
        "/messages/{message_id}",
        status_code=status.HTTP_204_NO_CONTENT,
        responses={404: {"model": ErrorResponse}},
    )
    def delete_message(message_id: int, repository: RepositoryDep) -> Response:
        repository.delete(message_id)
        return Response(status_code=status.HTTP_204_NO_CONTENT)

    @app.get(
        "/identities/{identity_id}/contacts/{contact_id}/messages",
        response_model=PagingResult[ChatDropMessage],
    )
    def list_conversation(
        identity_id: int,
        contact_id: int,
        repository: RepositoryDep,
        limit: Annotated[int, Query(ge=1, le=100, description="Maximum number of messages to return")] = 50,
        offset: Annotated[int, Query(ge=0, description="Number of messages to skip")] = 0,
    ) -> PagingResult[ChatDropMessage]:
        """
        One page of a conversation, newest first.

        available_range is the size of the whole conversation, so any single
        page tells the caller how many pages there are.
        """
        return repository.find_by_contact_page(contact_id, identity_id, offset, limit)

    @app.post(
        "/identities/{identity_id}/contacts/{contact_id}/read",
        response_model=MarkAsReadResponse,
    )
    def mark_conversation_read(
        identity_id: int, contact_id: int, repository: RepositoryDep
    ) -> MarkAsReadResponse:
        updated = repository.mark_as_read(contact_id, identity_id)
        return MarkAsReadResponse(updated=updated)

    @app.get(
        "/identities/{identity_id}/messages/new",
        response_model=list[ChatDropMessage],
    )
    def list_new(identity_id: int, repository: RepositoryDep) -> list[ChatDropMessage]:
        """Unread messages of the identity across all conversations."""
        return repository.find_new(identity_id)

    @app.get(
        "/identities/{identity_id}/messages/latest",
        response_model=list[ChatDropMessage],
    )
    def list_latest(identity_id: int, repository: RepositoryDep) -> list[ChatDropMessage]:
        """Newest message of every conversation, most recently active first."""
        return repository.find_latest(identity_id)

    @app.get("/metrics")
    async def metrics() -> Response:
        """Expose Prometheus-style metrics."""
        return Response(
            content=get_metrics(),
            media_type=get_metrics_content_type()
        )
