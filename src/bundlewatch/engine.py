"""Build engine seam.

The engine performs resolution, transformation and code generation for one
build attempt. The session only depends on the ``BuildEngine`` protocol;
``PassthroughEngine`` is a minimal engine that emits each entry module as its
own chunk.
"""

import asyncio
import inspect
import logging
import os
from collections.abc import Callable
from pathlib import Path
from typing import Any, Protocol

from bundlewatch.errors import BuildFailure
from bundlewatch.models import BuildError, BuildOutput, OutputAsset
from bundlewatch.request import CanonicalRequest, NormalizedOutput, PluginDescriptor

logger = logging.getLogger(__name__)


class BuildEngine(Protocol):
    """Protocol for build engines."""

    async def build(self, request: CanonicalRequest, output: NormalizedOutput) -> BuildOutput:
        """Run one build attempt.

        Failures are reported either in ``BuildOutput.errors`` or by raising
        ``BuildFailure``.
        """
        ...


class OutputWriter:
    """Writes build assets to the output directory."""

    async def write(self, out_dir: str, assets: list[OutputAsset]) -> None:
        await asyncio.to_thread(self._write, out_dir, assets)

    def _write(self, out_dir: str, assets: list[OutputAsset]) -> None:
        root = Path(out_dir)
        for asset in assets:
            target = root / asset.file_name
            target.parent.mkdir(parents=True, exist_ok=True)
            if isinstance(asset.content, bytes):
                target.write_bytes(asset.content)
            else:
                target.write_text(asset.content)
        logger.debug(f"Wrote {len(assets)} asset(s) to {out_dir}")


class PassthroughEngine:
    """Emit every entry module unchanged apart from plugin ``transform`` hooks.

    Args:
        check: Optional ``check(code, module_id)`` run on every module after
            transforms; raise ``BuildFailure`` to reject it
    """

    def __init__(self, check: Callable[[str, str], None] | None = None):
        self.check = check

    async def build(self, request: CanonicalRequest, output: NormalizedOutput) -> BuildOutput:
        result = BuildOutput()
        plugins = [p for p in request.active_plugins if isinstance(p, PluginDescriptor)]

        for item in request.input:
            module_id = item.import_path
            if not os.path.isabs(module_id):
                module_id = os.path.join(request.cwd, module_id)
            module_id = os.path.normpath(module_id)
            result.watch_files.append(module_id)

            try:
                code = Path(module_id).read_text()
            except OSError as e:
                result.errors.append(BuildError("UNRESOLVED_ENTRY", f"Cannot load entry module {item.import_path}: {e}"))
                continue

            name = item.name or Path(module_id).stem
            file_name = output.entry_file_names.replace("[name]", name)

            try:
                code = await self._transform(plugins, code, module_id)
                if self.check is not None:
                    self.check(code, module_id)
                code = await self._render_chunk(plugins, code, file_name, output)
            except BuildFailure as e:
                result.errors.extend(e.errors)
                continue

            result.assets.append(OutputAsset(file_name=file_name, content=code))

        return result

    async def _transform(self, plugins: list[PluginDescriptor], code: str, module_id: str) -> str:
        for plugin in plugins:
            hook = plugin.get_hook("transform")
            if hook is None:
                continue
            try:
                transformed = await _call(hook, code, module_id)
            except BuildFailure:
                raise
            except Exception as e:
                raise BuildFailure(BuildError("PLUGIN_ERROR", f"[plugin {plugin.name}] transform failed for {module_id}: {e}")) from e
            if isinstance(transformed, dict):
                transformed = transformed.get("code")
            if transformed is not None:
                code = transformed
        return code

    async def _render_chunk(
        self, plugins: list[PluginDescriptor], code: str, file_name: str, output: NormalizedOutput
    ) -> str:
        for plugin in plugins:
            hook = plugin.get_hook("render_chunk")
            if hook is None:
                continue
            try:
                rendered = await _call(hook, code, file_name, plugin.output or output)
            except BuildFailure:
                raise
            except Exception as e:
                raise BuildFailure(BuildError("PLUGIN_ERROR", f"[plugin {plugin.name}] render_chunk failed for {file_name}: {e}")) from e
            if isinstance(rendered, dict):
                rendered = rendered.get("code")
            if rendered is not None:
                code = rendered
        return code


async def _call(hook: Callable[..., Any], *args: Any) -> Any:
    result = hook(*args)
    if inspect.isawaitable(result):
        result = await result
    return result
