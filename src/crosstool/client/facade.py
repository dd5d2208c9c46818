import json
import os
from datetime import datetime, timezone
from typing import List, Optional

from crosstool.core.db.main import normalize_item_id, normalize_name
from crosstool.core.errors import ApplicationError, NotFoundError, ValidationError
from crosstool.core.models import AnalysisResult, FormatResult, ItemDetails, ItemDTO, MutationResult
from crosstool.core.utils.file import write_text_file
from crosstool.core.utils.logging import get_logger
from .gateway import RequestGateway
from .supervisor import Supervisor, SupervisorConfig

logger = get_logger("crosstool.client")


def _as_dict(payload: object, endpoint: str) -> dict:
    if not isinstance(payload, dict):
        raise ApplicationError(200, f"Unexpected response from {endpoint}", payload)
    return payload


class CrossToolClient:
    """
    Typed operations over the local server.

    Arguments are validated before any network I/O; the server is launched
    or adopted lazily on the first call.
    """

    def __init__(
        self,
        supervisor: Supervisor,
        gateway: Optional[RequestGateway] = None,
        security_token: Optional[str] = None,
    ):
        self.supervisor = supervisor
        self.gateway = gateway or RequestGateway(supervisor)
        self.security_token = security_token

    @classmethod
    def from_settings(cls, settings_obj) -> "CrossToolClient":
        supervisor = Supervisor(SupervisorConfig.from_settings(settings_obj))
        gateway = RequestGateway(supervisor, timeout=settings_obj.REQUEST_TIMEOUT_SEC)
        return cls(supervisor, gateway, security_token=settings_obj.CLIENT_TOKEN)

    def _mutation(self, endpoint: str, body: dict) -> MutationResult:
        return MutationResult.model_validate(_as_dict(self.gateway.call(endpoint, body), endpoint))

    # --- items ---

    def initialize_database(self, seed: bool = False) -> MutationResult:
        return self._mutation("/database/init", {"seed": bool(seed)})

    def list_items(self) -> List[ItemDTO]:
        payload = _as_dict(self.gateway.call("/database/items", {"action": "list"}), "/database/items")
        return [ItemDTO.model_validate(row) for row in payload.get("items") or []]

    def add_item(self, name: str) -> MutationResult:
        name = normalize_name(name)
        return self._mutation("/database/items", {"action": "add", "name": name})

    def update_item(self, item_id: object, name: str) -> MutationResult:
        item_id = normalize_item_id(item_id)
        name = normalize_name(name)
        return self._mutation("/database/items", {"action": "update", "id": item_id, "name": name})

    def delete_item(self, item_id: object) -> MutationResult:
        item_id = normalize_item_id(item_id)
        return self._mutation("/database/items", {"action": "delete", "id": item_id})

    def clear_database(self) -> MutationResult:
        return self._mutation("/database/clear", {})

    def get_item_details(self, item_id: object) -> Optional[ItemDetails]:
        item_id = normalize_item_id(item_id)
        for item in self.list_items():
            if item.id == item_id:
                return item.details
        return None

    def duplicate_item(self, item_id: object) -> MutationResult:
        """Add a copy of item ``item_id`` named ``"<name> (Copy)"``."""
        item_id = normalize_item_id(item_id)
        for item in self.list_items():
            if item.id == item_id:
                return self.add_item(f"{item.name} (Copy)")
        raise NotFoundError(f"Item with ID {item_id} not found")

    def export_items(self, path: Optional[str] = None) -> List[ItemDTO]:
        """
        List all items; with ``path``, also write them there as
        ``{"timestamp": ISO-8601, "data": [...]}``.
        """
        items = self.list_items()
        if path:
            document = {
                "timestamp": datetime.now(timezone.utc).isoformat(),
                "data": [item.model_dump() for item in items],
            }
            payload = json.dumps(document, indent=2, ensure_ascii=False)
            write_text_file(os.path.abspath(path), payload + "\n")
            logger.info("items_exported", path=path, count=len(items))
        return items

    # --- source tools ---

    def _source_body(self, code: Optional[str], file_path: Optional[str]) -> dict:
        if not code and not file_path:
            raise ValidationError("Either code or filePath must be provided")
        body: dict = {}
        if code:
            body["code"] = code
        if file_path:
            # The server runs with its own working directory.
            body["filePath"] = os.path.abspath(file_path)
        if self.security_token:
            body["securityToken"] = self.security_token
        return body

    def analyze(self, code: Optional[str] = None, file_path: Optional[str] = None) -> AnalysisResult:
        body = self._source_body(code, file_path)
        return AnalysisResult.model_validate(_as_dict(self.gateway.call("/analyze", body), "/analyze"))

    def format_code(
        self,
        code: Optional[str] = None,
        file_path: Optional[str] = None,
        save_to_file: bool = False,
    ) -> FormatResult:
        if save_to_file and not file_path:
            raise ValidationError("saveToFile requires filePath")
        body = self._source_body(code, file_path)
        if save_to_file:
            body["saveToFile"] = True
        return FormatResult.model_validate(_as_dict(self.gateway.call("/format", body), "/format"))

    # --- lifecycle ---

    def server_info(self) -> dict:
        return _as_dict(self.gateway.get("/"), "/")

    def status(self) -> dict:
        return self.supervisor.status()

    def shutdown(self, stop_server: bool = False) -> None:
        self.supervisor.shutdown(stop_server=stop_server)
