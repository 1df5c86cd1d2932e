import datetime
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import APIRouter, Body, FastAPI, Query, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, RedirectResponse
from pydantic import BaseModel

from auth_service import OAuthService
from calendar_service import CalendarService
from config import APP_VERSION, YamlConfig, configure_logging
from db import (
    AsyncExerciseRepository,
    AsyncWorkoutSessionRepository,
    AsyncWorkoutSetRepository,
    UserRepository,
)
from errors import (
    AuthenticationError,
    InvalidRangeError,
    NotFoundError,
    StoreError,
    ValidationError,
)
from progress_service import ProgressService
from tools import DateTools

logger = logging.getLogger(__name__)


class SessionCreate(BaseModel):
    user_id: str
    name: Optional[str] = None
    date: Optional[str] = None
    notes: Optional[str] = None
    start_time: Optional[str] = None


class SessionUpdate(BaseModel):
    name: Optional[str] = None
    date: Optional[str] = None
    notes: Optional[str] = None
    start_time: Optional[str] = None
    end_time: Optional[str] = None


class SetCreate(BaseModel):
    workout_id: int
    exercise_id: str
    set_number: int
    reps: Optional[int] = None
    weight: Optional[float] = None
    rest_time: Optional[int] = None
    notes: Optional[str] = None


class SetUpdate(BaseModel):
    exercise_id: Optional[str] = None
    set_number: Optional[int] = None
    reps: Optional[int] = None
    weight: Optional[float] = None
    rest_time: Optional[int] = None
    notes: Optional[str] = None


class PreferencesUpdate(BaseModel):
    theme: Optional[str] = None
    weight_unit: Optional[str] = None


def _error(status: int, message: str, **extra) -> JSONResponse:
    return JSONResponse(
        status_code=status,
        content=jsonable_encoder({"success": False, "error": message, **extra}),
    )


class FitnessAPI:
    """Provides REST endpoints for workout logging and progress dashboards."""

    def __init__(
        self,
        db_path: str | None = None,
        yaml_path: str = "settings.yaml",
    ) -> None:
        self.config = YamlConfig(yaml_path)
        self.settings = self.config.settings()
        self.db_path = db_path or self.settings.database_path
        self.users = UserRepository(self.db_path)
        self.exercises = AsyncExerciseRepository(self.db_path)
        self.sessions = AsyncWorkoutSessionRepository(self.db_path)
        self.sets = AsyncWorkoutSetRepository(self.db_path)
        self.progress = ProgressService(self.sets, self.exercises, self.sessions)
        self.calendar = CalendarService(
            self.sessions, self.sets, self.settings.frequency_weeks
        )
        self.auth = OAuthService(self.settings, self.users)

        @asynccontextmanager
        async def lifespan(app: FastAPI):
            await self.open()
            try:
                yield
            finally:
                await self.close()

        self.app = FastAPI(
            title="GymTracker API",
            description="REST API for workout logging, progress and calendar views",
            version=APP_VERSION,
            lifespan=lifespan,
        )
        self._setup_error_handlers()
        self._setup_routes()

    async def open(self) -> None:
        for repo in (self.exercises, self.sessions, self.sets):
            await repo.open()
        logger.info("Opened database %s", self.db_path)

    async def close(self) -> None:
        for repo in (self.exercises, self.sessions, self.sets):
            await repo.close()
        logger.info("Closed database %s", self.db_path)

    def _setup_error_handlers(self) -> None:
        @self.app.exception_handler(ValidationError)
        async def validation_error(request: Request, exc: ValidationError):
            return _error(400, str(exc))

        @self.app.exception_handler(NotFoundError)
        async def not_found(request: Request, exc: NotFoundError):
            return _error(404, str(exc))

        @self.app.exception_handler(AuthenticationError)
        async def auth_error(request: Request, exc: AuthenticationError):
            return _error(401, str(exc))

        @self.app.exception_handler(StoreError)
        async def store_error(request: Request, exc: StoreError):
            logger.error("Store failure on %s: %s", request.url.path, exc)
            return _error(500, "Database error", details=str(exc))

        @self.app.exception_handler(RequestValidationError)
        async def request_error(request: Request, exc: RequestValidationError):
            details = [
                {"loc": list(err["loc"]), "msg": err["msg"]} for err in exc.errors()
            ]
            return _error(400, "Invalid request parameters", details=details)

    def _setup_routes(self) -> None:
        progress_router = APIRouter(prefix="/progress", tags=["Progress"])
        sessions_router = APIRouter(prefix="/workout-sessions", tags=["Sessions"])
        sets_router = APIRouter(prefix="/workout-sets", tags=["Sets"])
        exercises_router = APIRouter(prefix="/exercises", tags=["Exercises"])
        auth_router = APIRouter(prefix="/auth", tags=["Auth"])
        users_router = APIRouter(prefix="/users", tags=["Users"])

        @self.app.get(
            "/health",
            summary="Health check",
            description="Verify API and database connectivity.",
        )
        def health():
            """Return API and database connection status."""
            self.users.count()
            return {"status": "ok", "version": APP_VERSION}

        @progress_router.get("")
        async def get_progress(
            user_id: str = Query(None, alias="userId"),
            start_date: str = Query(None, alias="startDate"),
            end_date: str = Query(None, alias="endDate"),
            exercises: str = Query(None),
            metric: str = Query("volume"),
            limit: int = Query(ProgressService.DEFAULT_LIMIT),
        ):
            if not user_id:
                raise ValidationError("userId is required")
            if metric not in ProgressService.METRICS:
                raise ValidationError("metric must be one of weight, reps, volume")
            if limit < 1:
                raise ValidationError("limit must be positive")
            default_start, default_end = ProgressService.default_range(
                self.settings.progress_window_days
            )
            start = start_date or default_start
            end = end_date or default_end
            if not (DateTools.is_iso_date(start) and DateTools.is_iso_date(end)):
                raise ValidationError("Dates must be in YYYY-MM-DD format")
            if DateTools.parse_date(start) > DateTools.parse_date(end):
                raise InvalidRangeError()
            exercise_ids = [e for e in (exercises or "").split(",") if e]
            try:
                progress = await self.progress.progress(
                    user_id, start, end, exercise_ids, min(limit, self.settings.progress_limit)
                )
            except (ValidationError, NotFoundError):
                raise
            except Exception as e:
                logger.exception("Progress query failed for %s", user_id)
                return _error(500, "Failed to fetch progress data", details=str(e))
            return {
                "success": True,
                "data": {
                    "progress": progress,
                    "totalExercises": len(progress),
                    "dateRange": {"start": start, "end": end},
                },
            }

        @progress_router.get("/exercises")
        async def progress_exercises(user_id: str = Query(None, alias="userId")):
            if not user_id:
                raise ValidationError("userId is required")
            return {"success": True, "data": await self.progress.user_exercises(user_id)}

        @progress_router.get("/date-range")
        async def progress_date_range(user_id: str = Query(None, alias="userId")):
            if not user_id:
                raise ValidationError("userId is required")
            return {"success": True, "data": await self.progress.date_range(user_id)}

        @self.app.get("/calendar-data", tags=["Calendar"])
        async def calendar_data(
            user_id: str = Query(None, alias="userId"),
            start: str = Query(None),
            end: str = Query(None),
        ):
            if not user_id:
                raise ValidationError("userId is required")
            try:
                result = await self.calendar.calendar_data(
                    user_id,
                    start,
                    end,
                    window_days=self.settings.calendar_window_days,
                )
            except (ValidationError, NotFoundError):
                raise
            except Exception as e:
                logger.exception("Calendar query failed for %s", user_id)
                today = datetime.date.today().isoformat()
                return _error(
                    500,
                    "Failed to get calendar data",
                    details=str(e),
                    data=[],
                    summary=CalendarService.empty_summary(),
                    dateRange={"start": today, "end": today},
                )
            return {"success": True, **result}

        @self.app.get("/workout-details", tags=["Calendar"])
        async def workout_details(
            user_id: str = Query(None, alias="userId"),
            date: str = Query(None),
        ):
            if not user_id:
                raise ValidationError("userId is required")
            if not date:
                raise ValidationError("date is required")
            try:
                details = await self.calendar.workout_details(user_id, date)
            except (ValidationError, NotFoundError):
                raise
            except Exception as e:
                logger.exception("Workout details failed for %s on %s", user_id, date)
                return _error(
                    500, "Failed to get workout details", details=str(e), data=[]
                )
            return {"success": True, "data": details}

        @sessions_router.get("")
        async def list_sessions(
            user_id: str = Query(None, alias="userId"),
            limit: int = Query(20),
            offset: int = Query(0),
        ):
            if not user_id:
                raise ValidationError("userId is required")
            if limit < 1 or offset < 0:
                raise ValidationError("limit must be positive and offset non-negative")
            sessions, total = await self.sessions.fetch_for_user(user_id, limit, offset)
            return {
                "success": True,
                "data": sessions,
                "total": total,
                "page": offset // limit + 1,
                "limit": limit,
                "hasMore": offset + len(sessions) < total,
            }

        @sessions_router.post("")
        async def create_session(payload: SessionCreate):
            sid = await self.sessions.create(
                payload.user_id,
                date=payload.date,
                name=payload.name,
                notes=payload.notes,
                start_time=payload.start_time,
            )
            logger.info("Created session %s for %s", sid, payload.user_id)
            return {"success": True, "data": await self.sessions.fetch_detail(sid)}

        @sessions_router.patch("")
        async def update_session(
            session_id: int = Query(None, alias="id"),
            action: str = Query(None),
            payload: SessionUpdate | None = Body(None),
        ):
            if session_id is None:
                raise ValidationError("Session ID is required")
            if action == "complete":
                session = await self.sessions.complete(session_id)
            elif action is not None:
                raise ValidationError(f"Unknown action: {action}")
            else:
                updates = payload.model_dump(exclude_unset=True) if payload else {}
                session = await self.sessions.update(session_id, **updates)
            return {"success": True, "data": session}

        @sessions_router.delete("")
        async def delete_session(session_id: int = Query(None, alias="id")):
            if session_id is None:
                raise ValidationError("Session ID is required")
            await self.sessions.delete(session_id)
            return {"success": True}

        @sets_router.get("")
        async def get_sets(
            set_id: int = Query(None, alias="id"),
            workout_id: int = Query(None, alias="workoutId"),
        ):
            if set_id is not None:
                return {"success": True, "data": await self.sets.fetch_detail(set_id)}
            if workout_id is not None:
                await self.sessions.fetch_detail(workout_id)
                return {
                    "success": True,
                    "data": await self.sets.fetch_for_session(workout_id),
                }
            raise ValidationError("Either id or workoutId is required")

        @sets_router.post("")
        async def create_set(payload: SetCreate):
            set_id = await self.sets.add(
                payload.workout_id,
                payload.exercise_id,
                payload.set_number,
                payload.reps,
                payload.weight,
                payload.rest_time,
                payload.notes,
            )
            return {"success": True, "data": await self.sets.fetch_detail(set_id)}

        @sets_router.put("")
        async def update_set(
            payload: SetUpdate,
            set_id: int = Query(None, alias="id"),
        ):
            if set_id is None:
                raise ValidationError("Set ID is required")
            updated = await self.sets.update(
                set_id, **payload.model_dump(exclude_unset=True)
            )
            return {"success": True, "data": updated}

        @sets_router.delete("")
        async def delete_set(set_id: int = Query(None, alias="id")):
            if set_id is None:
                raise ValidationError("Set ID is required")
            await self.sets.remove(set_id)
            return {"success": True}

        @exercises_router.get("/search")
        async def search_exercises(
            query: str = None,
            category_id: str = None,
            equipment: str = None,
            muscle_group: str = None,
            level: str = None,
            force: str = None,
            limit: int = 20,
            offset: int = 0,
        ):
            if limit < 1 or offset < 0:
                raise ValidationError("limit must be positive and offset non-negative")
            results, total = await self.exercises.search(
                query, category_id, equipment, muscle_group, level, force, limit, offset
            )
            return {
                "success": True,
                "data": results,
                "total": total,
                "page": offset // limit + 1,
                "limit": limit,
                "hasMore": offset + len(results) < total,
            }

        @exercises_router.get("/{exercise_id}")
        async def get_exercise(exercise_id: str):
            return {"success": True, "data": await self.exercises.fetch_detail(exercise_id)}

        @self.app.get("/exercise-categories", tags=["Exercises"])
        async def exercise_categories():
            return {"success": True, "data": await self.exercises.fetch_categories()}

        @self.app.get("/muscle-groups", tags=["Exercises"])
        async def muscle_groups():
            return {"success": True, "data": await self.exercises.fetch_muscle_groups()}

        @self.app.get("/equipment-types", tags=["Exercises"])
        async def equipment_types():
            return {
                "success": True,
                "data": await self.exercises.fetch_equipment_types(),
            }

        @auth_router.get("/login")
        def login():
            state = self.auth.new_state()
            response = RedirectResponse(url=self.auth.authorization_url(state))
            response.set_cookie(
                OAuthService.STATE_COOKIE, state, httponly=True, samesite="lax"
            )
            return response

        @auth_router.get("/callback")
        def callback(request: Request, code: str = None, state: str = None):
            expected = request.cookies.get(OAuthService.STATE_COOKIE)
            user = self.auth.authenticate(code or "", state or "", expected)
            response = JSONResponse(
                content=jsonable_encoder({"success": True, "data": user})
            )
            response.delete_cookie(OAuthService.STATE_COOKIE)
            return response

        @users_router.get("/{user_id}")
        def get_user(user_id: str):
            user = self.users.fetch_detail(user_id)
            user["stats"] = self.users.stats(user_id)
            return {"success": True, "data": user}

        @users_router.put("/{user_id}/preferences")
        def update_preferences(user_id: str, payload: PreferencesUpdate):
            user = self.users.update_preferences(
                user_id, theme=payload.theme, weight_unit=payload.weight_unit
            )
            return {"success": True, "data": user}

        self.app.include_router(progress_router)
        self.app.include_router(sessions_router)
        self.app.include_router(sets_router)
        self.app.include_router(exercises_router)
        self.app.include_router(auth_router)
        self.app.include_router(users_router)


api = FitnessAPI()
app = api.app

if __name__ == "__main__":
    import uvicorn

    configure_logging(api.settings.log_level)
    uvicorn.run(app)
