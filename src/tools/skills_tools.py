"""
MCP tools for workspace skills.

A skill is a directory under /skills holding a SKILL.md file. The file may
open with a YAML frontmatter block that names the skill, describes it, tags
it and allowlists the reference, script and asset files agents may read.

Provides tools to list, search, read, activate and deactivate skills, read
allowlisted skill files, and render the prompt block for the skills active
in a conversation.
"""

import logging
import posixpath
import threading
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Set, Tuple

import frontmatter
import yaml

from utils.errors import FileTooLargeError, NotFoundError, ValidationError
from workspace.context import ToolContext
from workspace.runtime import WorkspaceRuntime


logger = logging.getLogger("workspace-runtime.skills_tools")

TOOLKIT = "skills"

SKILLS_ROOT = "/skills"
SKILL_FILE = "SKILL.md"
SKILL_FILE_KINDS = ("references", "scripts", "assets")
UNKNOWN_CONVERSATION = "unknown"
PROMPT_SEPARATOR = "\n\n---\n\n"


@dataclass
class Skill:
    """A discovered skill and its parsed SKILL.md."""
    id: str
    path: str
    name: str
    description: Optional[str] = None
    body: str = ""
    tags: List[str] = field(default_factory=list)
    references: List[str] = field(default_factory=list)
    scripts: List[str] = field(default_factory=list)
    assets: List[str] = field(default_factory=list)

    @property
    def directory(self) -> str:
        return posixpath.dirname(self.path)

    def summary(self) -> Dict[str, Any]:
        return {"id": self.id, "name": self.name, "description": self.description, "tags": self.tags}


def parse_frontmatter(content: str) -> Tuple[Dict[str, Any], str]:
    """
    Split SKILL.md content into its frontmatter mapping and body.

    Content without frontmatter, or with malformed YAML, yields an empty
    mapping and the content unchanged.
    """
    try:
        post = frontmatter.loads(content)
    except yaml.YAMLError as e:
        logger.warning(f"Ignoring malformed SKILL.md frontmatter: {e}")
        return {}, content
    return dict(post.metadata), post.content


def _string_list(value: Any) -> List[str]:
    if not isinstance(value, list):
        return []
    return [str(item) for item in value]


def build_skill(root: str, skill_md_path: str, content: str) -> Skill:
    """Build a Skill from a SKILL.md path under ``root`` and its content."""
    metadata, body = parse_frontmatter(content)

    skill_dir = posixpath.dirname(skill_md_path)
    prefix = root.rstrip("/") + "/"
    skill_id = skill_dir[len(prefix):] if skill_dir.startswith(prefix) else skill_dir.lstrip("/")

    name = metadata.get("name")
    description = metadata.get("description")
    return Skill(
        id=skill_id,
        path=skill_md_path,
        name=name if isinstance(name, str) else skill_id,
        description=description if isinstance(description, str) else None,
        body=body.strip(),
        tags=_string_list(metadata.get("tags")),
        references=_string_list(metadata.get("references")),
        scripts=_string_list(metadata.get("scripts")),
        assets=_string_list(metadata.get("assets")),
    )


class SkillActivations:
    """Activated skill ids per conversation."""

    def __init__(self):
        self._active: Dict[str, Set[str]] = {}
        self._lock = threading.Lock()

    def activate(self, conversation_id: str, skill_id: str) -> List[str]:
        with self._lock:
            active = self._active.setdefault(conversation_id, set())
            active.add(skill_id)
            return sorted(active)

    def deactivate(self, conversation_id: str, skill_id: str) -> List[str]:
        with self._lock:
            active = self._active.setdefault(conversation_id, set())
            active.discard(skill_id)
            return sorted(active)

    def active(self, conversation_id: str) -> List[str]:
        with self._lock:
            return sorted(self._active.get(conversation_id, ()))


def _conversation(ctx: ToolContext) -> str:
    return ctx.conversation_id or UNKNOWN_CONVERSATION


def _require_skill_id(skill_id: str) -> None:
    if not skill_id or not skill_id.strip():
        raise ValidationError("skill_id must not be empty")


async def discover_skills(runtime: WorkspaceRuntime, ctx: ToolContext, root: str = SKILLS_ROOT) -> List[Skill]:
    """Find and parse every SKILL.md under ``root``, sorted by skill id."""
    normalized_root = runtime.normalize_workspace_path(root)
    backend = runtime.get_filesystem_backend()
    matches = await runtime.with_timeout(backend.glob_info(f"**/{SKILL_FILE}", normalized_root))

    skills = []
    for match in matches:
        if match.is_dir:
            continue
        ctx.ensure_active()
        try:
            content = await runtime.with_timeout(backend.read(match.path))
        except FileTooLargeError as e:
            logger.warning(f"Skipping oversized skill file: {e}")
            continue
        skills.append(build_skill(normalized_root, match.path, content))

    skills.sort(key=lambda skill: skill.id)
    return skills


async def find_skill(runtime: WorkspaceRuntime, ctx: ToolContext, skill_id: str) -> Skill:
    for skill in await discover_skills(runtime, ctx):
        if skill.id == skill_id:
            return skill
    raise NotFoundError(f"Skill not found: {skill_id}")


async def workspace_list_skills(runtime: WorkspaceRuntime, ctx: ToolContext) -> Dict[str, Any]:
    """List available workspace skills."""
    async with runtime.tool_call(TOOLKIT, "workspace_list_skills", ctx):
        skills = await discover_skills(runtime, ctx)
        return {"skills": [skill.summary() for skill in skills]}


async def workspace_search_skills(
    runtime: WorkspaceRuntime,
    ctx: ToolContext,
    query: str,
    top_k: int = 10
) -> Dict[str, Any]:
    """
    Search skills by case-insensitive substring match.

    A name match scores 3, a description match 2 and a body match 1; the
    scores add up. Skills scoring 0 are dropped.

    Args:
        runtime: Workspace runtime
        ctx: Tool call context
        query: Substring to look for
        top_k: Maximum results

    Returns:
        Dict with query and results of id, name, description and score
    """
    if not query:
        raise ValidationError("Query must not be empty")
    if top_k < 1:
        raise ValidationError("top_k must be a positive integer")

    async with runtime.tool_call(TOOLKIT, "workspace_search_skills", ctx):
        needle = query.lower()
        scored = []
        for skill in await discover_skills(runtime, ctx):
            score = (
                (3 if needle in skill.name.lower() else 0)
                + (2 if needle in (skill.description or "").lower() else 0)
                + (1 if needle in skill.body.lower() else 0)
            )
            if score > 0:
                scored.append((skill, score))

        scored.sort(key=lambda item: item[1], reverse=True)
        return {
            "query": query,
            "results": [
                {"id": skill.id, "name": skill.name, "description": skill.description, "score": score}
                for skill, score in scored[:top_k]
            ],
        }


async def workspace_read_skill(runtime: WorkspaceRuntime, ctx: ToolContext, skill_id: str) -> Dict[str, Any]:
    """Read the full SKILL.md of a skill."""
    _require_skill_id(skill_id)

    async with runtime.tool_call(TOOLKIT, "workspace_read_skill", ctx):
        skill = await find_skill(runtime, ctx, skill_id)
        content = await runtime.with_timeout(runtime.get_filesystem_backend().read(skill.path))
        return {"id": skill.id, "path": skill.path, "content": content}


async def workspace_activate_skill(
    runtime: WorkspaceRuntime,
    activations: SkillActivations,
    ctx: ToolContext,
    skill_id: str
) -> Dict[str, Any]:
    """Activate a skill for the calling conversation."""
    _require_skill_id(skill_id)

    async with runtime.tool_call(TOOLKIT, "workspace_activate_skill", ctx):
        await find_skill(runtime, ctx, skill_id)
        conversation_id = _conversation(ctx)
        active = activations.activate(conversation_id, skill_id)
        logger.info(f"Activated skill {skill_id} for conversation {conversation_id}")
        return {"conversationId": conversation_id, "activated": active}


async def workspace_deactivate_skill(
    runtime: WorkspaceRuntime,
    activations: SkillActivations,
    ctx: ToolContext,
    skill_id: str
) -> Dict[str, Any]:
    """Deactivate a skill for the calling conversation."""
    _require_skill_id(skill_id)

    async with runtime.tool_call(TOOLKIT, "workspace_deactivate_skill", ctx):
        await find_skill(runtime, ctx, skill_id)
        conversation_id = _conversation(ctx)
        active = activations.deactivate(conversation_id, skill_id)
        return {"conversationId": conversation_id, "activated": active}


async def _read_skill_file(
    runtime: WorkspaceRuntime,
    ctx: ToolContext,
    tool_name: str,
    kind: str,
    skill_id: str,
    file: str
) -> Dict[str, Any]:
    _require_skill_id(skill_id)
    if not file:
        raise ValidationError("file must not be empty")

    async with runtime.tool_call(TOOLKIT, tool_name, ctx):
        skill = await find_skill(runtime, ctx, skill_id)
        if file not in getattr(skill, kind):
            raise ValidationError(f"File not allowlisted in SKILL.md ({kind}): {file}")

        target = runtime.normalize_workspace_path(f"{skill.directory}/{file}")
        content = await runtime.with_timeout(runtime.get_filesystem_backend().read(target))
        return {"path": target, "content": content}


async def workspace_read_skill_reference(
    runtime: WorkspaceRuntime,
    ctx: ToolContext,
    skill_id: str,
    file: str
) -> Dict[str, Any]:
    """Read a reference file listed under ``references`` in SKILL.md."""
    return await _read_skill_file(runtime, ctx, "workspace_read_skill_reference", "references", skill_id, file)


async def workspace_read_skill_script(
    runtime: WorkspaceRuntime,
    ctx: ToolContext,
    skill_id: str,
    file: str
) -> Dict[str, Any]:
    """Read a script file listed under ``scripts`` in SKILL.md."""
    return await _read_skill_file(runtime, ctx, "workspace_read_skill_script", "scripts", skill_id, file)


async def workspace_read_skill_asset(
    runtime: WorkspaceRuntime,
    ctx: ToolContext,
    skill_id: str,
    file: str
) -> Dict[str, Any]:
    """Read an asset file listed under ``assets`` in SKILL.md."""
    return await _read_skill_file(runtime, ctx, "workspace_read_skill_asset", "assets", skill_id, file)


def render_skills_prompt(contents: List[str]) -> str:
    """Wrap SKILL.md contents in a <workspace_skills> block; empty when there is nothing to inject."""
    joined = PROMPT_SEPARATOR.join(contents)
    if not joined.strip():
        return ""
    return f"<workspace_skills>\n{joined}\n</workspace_skills>"


async def workspace_skills_prompt(
    runtime: WorkspaceRuntime,
    activations: SkillActivations,
    ctx: ToolContext
) -> Dict[str, Any]:
    """Render the SKILL.md files of the conversation's active skills as a prompt block."""
    async with runtime.tool_call(TOOLKIT, "workspace_skills_prompt", ctx):
        conversation_id = _conversation(ctx)
        active = set(activations.active(conversation_id))
        backend = runtime.get_filesystem_backend()

        contents = []
        for skill in await discover_skills(runtime, ctx):
            if skill.id in active:
                contents.append(await runtime.with_timeout(backend.read(skill.path)))

        return {"conversationId": conversation_id, "skills": sorted(active), "prompt": render_skills_prompt(contents)}
