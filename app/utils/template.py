import os

from jinja2 import Environment, FileSystemLoader, select_autoescape

TEMPLATE_DIR = os.path.join(os.path.dirname(os.path.dirname(__file__)), "templates")

env = Environment(
    loader=FileSystemLoader(TEMPLATE_DIR),
    autoescape=select_autoescape(["html"])
)


def format_amount(cents) -> str:
    return f"{(cents or 0) / 100:,.2f}"


env.filters["money"] = format_amount


def render_template(template_path: str, **context) -> str:
    template = env.get_template(template_path)
    return template.render(**context)
