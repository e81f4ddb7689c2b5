"""
Deploy workflow template rendering.

The GitHub Actions workflow we commit into user repositories lives in
frontbase/workflows/deploy.yml. It contains {{TOKEN}} placeholders for a
fixed set of values. Rendering is plain token substitution, not a template
language, followed by an integrity check: a committed workflow with a
leftover placeholder would only fail later, inside the user's CI.

GitHub's own expressions (${{ secrets.X }}, ${{ env.Y }}, ...) share the
brace syntax and are left alone.
"""

import re
from pathlib import Path

from frontbase.errors import TemplateIncompleteError

TEMPLATE_PATH = Path(__file__).resolve().parent.parent / "workflows" / "deploy.yml"

TOKENS = (
    "BACKEND_URL",
    "PROJECT_SLUG",
    "OWNER_LOGIN",
    "REPO_NAME",
    "USER_EMAIL",
    "GITHUB_ID",
    "REPO_ID",
    "DEFAULT_BRANCH",
    "BUILD_COMMAND",
    "BUILD_DIR",
)

# Expression contexts evaluated by the Actions runner itself.
RUNNER_CONTEXTS = (
    "env.",
    "secrets.",
    "github.",
    "vars.",
    "steps.",
    "runner.",
    "inputs.",
    "matrix.",
    "needs.",
    "job.",
)

_PLACEHOLDER = re.compile(r"\{\{([^{}]*)\}\}")


def load_template(path: Path = TEMPLATE_PATH) -> str:
    content = path.read_text(encoding="utf-8")
    if not content.strip():
        raise ValueError(f"Workflow template is empty: {path}")
    return content


def unresolved_tokens(content: str) -> list[str]:
    """Placeholders still present in `content`, ignoring runner expressions."""
    leftovers = []
    for match in _PLACEHOLDER.finditer(content):
        name = match.group(1).strip()
        if name.startswith(RUNNER_CONTEXTS):
            continue
        leftovers.append(match.group(0))
    return leftovers


def render(template: str, variables: dict[str, object]) -> str:
    """
    Substitute every recognised {{TOKEN}} that has a value in `variables`.

    Raises TemplateIncompleteError if any placeholder survives, e.g. because
    a variable was missing or None.
    """
    content = template
    for token in TOKENS:
        value = variables.get(token)
        if value is None:
            continue
        content = content.replace("{{" + token + "}}", str(value))

    leftovers = unresolved_tokens(content)
    if leftovers:
        raise TemplateIncompleteError(leftovers)
    return content
