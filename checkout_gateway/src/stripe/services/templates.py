from pathlib import Path
from typing import Dict, Optional

TEMPLATES_DIR = Path(__file__).resolve().parent.parent / "templates"

class TemplateNotFound(Exception):
    pass


def _load(path: Path) -> str:
    with path.open("r", encoding="utf-8") as f:
        return f.read()


def _format(raw: str, vars: Dict[str, object], path: Path) -> str:
    try:
        return raw.format(**vars)
    except KeyError as e:
        raise KeyError(f"Missing template variable '{e.args[0]}' for {path}") from e


def render_templates(
    template_name: str,
    text_vars: Dict[str, object],
    html_vars: Optional[Dict[str, object]] = None,
    templates_dir: Path = TEMPLATES_DIR,
) -> Dict[str, Optional[str]]:
    """
    Load and render `{template_name}.txt` (required) and `{template_name}.html`
    (optional). Returns a dict with keys `text` and `html`.
    Uses Python str.format for placeholder substitution; `html_vars` defaults
    to `text_vars` and is expected to be escaped by the caller.
    """
    txt_path = templates_dir / f"{template_name}.txt"
    html_path = templates_dir / f"{template_name}.html"

    if not txt_path.exists():
        raise TemplateNotFound(f"Missing required text template: {txt_path}")

    text = _format(_load(txt_path), text_vars, txt_path)

    html: Optional[str] = None
    if html_path.exists():
        html = _format(_load(html_path), html_vars if html_vars is not None else text_vars, html_path)

    return {"text": text, "html": html}
