"""Named command handlers for the embedded memo store."""

import logging
from dataclasses import is_dataclass
from typing import Any, Callable, Dict, Optional, Tuple, Type

from pydantic import BaseModel, Field
from pydantic import ValidationError as PydanticValidationError
from starlette import status

from shared.db_operations import DatabaseOperations
from shared.errors import NotesError

logger = logging.getLogger(__name__)


class UnknownCommand(NotesError):
    http_status = status.HTTP_404_NOT_FOUND
    code = "unknown_command"


class InvalidArguments(NotesError):
    http_status = status.HTTP_422_UNPROCESSABLE_ENTITY
    code = "invalid_arguments"


# Argument models

class GetMemosArgs(BaseModel):
    limit: int = Field(100, ge=1, le=1000)
    offset: int = Field(0, ge=0)
    category: Optional[str] = None


class IdArgs(BaseModel):
    id: int


class CreateMemoArgs(BaseModel):
    content: str
    category: Optional[str] = None
    target_date: Optional[str] = None


class UpdateMemoArgs(BaseModel):
    id: int
    content: Optional[str] = None
    category: Optional[str] = None
    target_date: Optional[str] = None
    completion_status: Optional[str] = None
    pinned: Optional[bool] = None
    archived: Optional[bool] = None


class SearchMemosArgs(BaseModel):
    query: str
    limit: int = Field(50, ge=1, le=500)


class DateArgs(BaseModel):
    date: str = Field(..., pattern=r"^\d{4}-\d{2}-\d{2}$")


class CreatePlanArgs(BaseModel):
    plan_date: str = Field(..., pattern=r"^\d{4}-\d{2}-\d{2}$")
    title: str
    description: Optional[str] = None
    category: Optional[str] = None
    priority: Optional[int] = None


class UpdatePlanArgs(BaseModel):
    id: int
    title: Optional[str] = None
    description: Optional[str] = None


def _serialize(result: Any) -> Any:
    if is_dataclass(result):
        return result.to_dict()
    if isinstance(result, list):
        return [_serialize(item) for item in result]
    return result


class CommandDispatcher:
    """Maps command names to store operations, validating arguments first."""

    def __init__(self, db_ops: DatabaseOperations):
        self.db_ops = db_ops
        self._commands: Dict[str, Tuple[Type[BaseModel], Callable[[Any], Any]]] = {
            # memo commands
            "create_memo": (CreateMemoArgs, lambda a: db_ops.create_memo(a.content, a.category, a.target_date)),
            "get_memos": (GetMemosArgs, lambda a: db_ops.get_memos(a.limit, a.offset, a.category)),
            "get_memo": (IdArgs, lambda a: db_ops.get_memo(a.id)),
            "update_memo": (UpdateMemoArgs, self._update_memo),
            "delete_memo": (IdArgs, lambda a: db_ops.delete_memo(a.id)),
            "search_memos": (SearchMemosArgs, lambda a: db_ops.search_memos(a.query, a.limit)),
            "get_memos_by_date": (DateArgs, lambda a: db_ops.get_memos_by_date(a.date)),
            "toggle_memo_status": (IdArgs, lambda a: db_ops.toggle_memo_status(a.id)),
            # plan commands
            "create_plan": (CreatePlanArgs, lambda a: db_ops.create_plan(
                a.plan_date, a.title, a.description, a.category, a.priority
            )),
            "get_plans_by_date": (DateArgs, lambda a: db_ops.get_plans_by_date(a.date)),
            "toggle_plan_status": (IdArgs, lambda a: db_ops.toggle_plan_completion(a.id)),
            "update_plan": (UpdatePlanArgs, lambda a: db_ops.update_plan(a.id, a.title, a.description)),
            "delete_plan": (IdArgs, lambda a: db_ops.delete_plan(a.id)),
        }

    def _update_memo(self, args: UpdateMemoArgs):
        changes = args.model_dump(exclude={"id"}, exclude_none=True)
        return self.db_ops.update_memo(args.id, **changes)

    @property
    def command_names(self) -> list:
        return sorted(self._commands)

    def invoke(self, command: str, arguments: Optional[Dict[str, Any]] = None) -> Any:
        """
        Run a named command.

        Args:
            command: Command name, e.g. ``get_memos``
            arguments: Structured argument object

        Returns:
            JSON-serialisable result

        Raises:
            UnknownCommand: If the command is not registered
            InvalidArguments: If the arguments fail validation
            NotFound: If the command targets a missing row
        """
        entry = self._commands.get(command)
        if entry is None:
            raise UnknownCommand(f"Unknown command '{command}'", {"command": command})

        model, handler = entry
        try:
            args = model.model_validate(arguments or {})
        except PydanticValidationError as e:
            raise InvalidArguments(
                f"Invalid arguments for '{command}'",
                {"errors": [
                    {"field": ".".join(str(loc) for loc in err["loc"]), "message": err["msg"]}
                    for err in e.errors()
                ]}
            )

        logger.debug(f"Invoking local command {command}")
        return _serialize(handler(args))
