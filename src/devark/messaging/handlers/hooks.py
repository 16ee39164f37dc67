"""Hook installation and tool detection."""

from pathlib import Path

from ...detection.hooks import ClaudeHookInstaller, CursorHookInstaller
from ...errors import InvalidInputError
from ...services import PROJECT_ROOT_KEY
from ..protocol import MessageType as T
from .base import BaseHandler

RECENT_PROJECT_LIMIT = 10


class HooksHandler(BaseHandler):
    def routes(self):
        return {
            T.GET_DETECTED_TOOLS: self.get_detected_tools,
            T.GET_RECENT_PROJECTS: self.get_recent_projects,
            T.SELECT_PROJECT_FOLDER: self.select_project_folder,
            T.INSTALL_HOOKS: self.install_hooks,
            T.INSTALL_CLAUDE_HOOKS: self.install_hooks,
            T.UNINSTALL_HOOKS: self.uninstall_hooks,
            T.INSTALL_CURSOR_HOOKS: self.install_cursor_hooks,
            T.GET_HOOKS_STATUS: self.get_hooks_status,
            T.GET_CLAUDE_HOOKS_STATUS: self.get_hooks_status,
        }

    def get_detected_tools(self, data: dict) -> None:
        readers = {r.name: r.is_available() for r in self.services.aggregator.readers}
        self.send(T.DETECTED_TOOLS, {
            "tools": readers,
            "detection": self.services.detection.get_status(),
        })

    def get_recent_projects(self, data: dict) -> None:
        projects: list[dict] = []
        seen = set()
        for session in self.services.aggregator.list_sessions():
            path = session.workspace_path
            if not path or path in seen:
                continue
            seen.add(path)
            projects.append({"name": session.workspace_name, "path": path, "source": session.source})
            if len(projects) == RECENT_PROJECT_LIMIT:
                break
        self.send(T.RECENT_PROJECTS, {"projects": projects})

    def select_project_folder(self, data: dict) -> None:
        path = data.get("path")
        if not path or not Path(path).is_dir():
            raise InvalidInputError(f"Not a directory: {path}")
        self.services.config.set(PROJECT_ROOT_KEY, str(Path(path)))
        self.send(T.PROJECT_FOLDER_SELECTED, {"path": str(Path(path))})

    def install_hooks(self, data: dict) -> None:
        root = self._project_root(data)
        result = ClaudeHookInstaller(root).install()
        body = {"claude": result.to_dict(), "success": result.success}
        if data.get("cursor"):
            cursor = CursorHookInstaller(root).install()
            body["cursor"] = cursor.to_dict()
            body["success"] = result.success and cursor.success
        self.send(T.INSTALL_HOOKS_COMPLETE, body)

    def install_cursor_hooks(self, data: dict) -> None:
        result = CursorHookInstaller(self._project_root(data)).install()
        self.send(T.INSTALL_HOOKS_COMPLETE, {"cursor": result.to_dict(), "success": result.success})

    def uninstall_hooks(self, data: dict) -> None:
        root = self._project_root(data)
        claude = ClaudeHookInstaller(root).uninstall()
        cursor = CursorHookInstaller(root).uninstall()
        self.send(T.UNINSTALL_HOOKS_COMPLETE, {
            "claude": claude.to_dict(),
            "cursor": cursor.to_dict(),
            "success": claude.success and cursor.success,
        })

    def get_hooks_status(self, data: dict) -> None:
        root = data.get("path") or self.services.config.get(PROJECT_ROOT_KEY)
        if not root:
            self.send(T.HOOKS_STATUS, {"projectRoot": None, "claude": None})
            return
        self.send(T.HOOKS_STATUS, {
            "projectRoot": root,
            "claude": ClaudeHookInstaller(Path(root)).status(),
        })

    def _project_root(self, data: dict) -> Path:
        root = data.get("path") or self.services.config.get(PROJECT_ROOT_KEY)
        if not root:
            raise InvalidInputError("Select a project folder first")
        return Path(root)
