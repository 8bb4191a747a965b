"""Jinja2 templates for lifecycle notification emails."""

from typing import Any, Dict, NamedTuple

from jinja2 import DictLoader, Environment, StrictUndefined, select_autoescape


class RenderedMessage(NamedTuple):
    subject: str
    text: str
    html: str


WELCOME = "welcome"
PAID_WELCOME = "paid_welcome"

_HTML_HEAD = """<!DOCTYPE html>
<html>
<head>
  <style>
    body { font-family: Arial, sans-serif; line-height: 1.6; color: #333; }
    .container { max-width: 600px; margin: 0 auto; padding: 20px; }
    .header { background-color: #f8f9fa; padding: 20px; text-align: center; border-radius: 5px; }
    .content { padding: 20px 0; }
    .details { background-color: #f8f9fa; padding: 15px; border-radius: 5px; margin: 20px 0; }
    .footer { text-align: center; padding: 20px 0; color: #666; font-size: 14px; }
  </style>
</head>
"""

TEMPLATES: Dict[str, str] = {
    f"{WELCOME}.subject": "Welcome to {{ product_name }} - Your Account is Ready!",
    f"{WELCOME}.txt": """Hello {{ name }},

Welcome to {{ product_name }}! Your account has been successfully created and is ready to use.

Account Details:
- Email: {{ email }}
- Contact Number: {{ contact_number or 'Not provided' }}
- User ID: {{ user_id }}
- Account Tier: {{ tier }}
- Created: {{ created_at }}

You can now log in and start using our services.

Best regards,
The {{ product_name }} Team""",
    f"{WELCOME}.html": _HTML_HEAD + """<body>
  <div class="container">
    <div class="header"><h1>Welcome to {{ product_name }}!</h1></div>
    <div class="content">
      <p>Hello {{ name }},</p>
      <p>Your account has been successfully created and is ready to use.</p>
      <div class="details">
        <h3>Account Details:</h3>
        <ul>
          <li><strong>Email:</strong> {{ email }}</li>
          <li><strong>Contact Number:</strong> {{ contact_number or 'Not provided' }}</li>
          <li><strong>User ID:</strong> {{ user_id }}</li>
          <li><strong>Account Tier:</strong> {{ tier }}</li>
          <li><strong>Created:</strong> {{ created_at }}</li>
        </ul>
      </div>
    </div>
    <div class="footer"><p>Best regards,<br>The {{ product_name }} Team</p></div>
  </div>
</body>
</html>""",
    f"{PAID_WELCOME}.subject": "Welcome to {{ product_name }} Pro - Premium Features Unlocked!",
    f"{PAID_WELCOME}.txt": """Welcome to Pro, {{ name }}!

Your account has been successfully upgraded to Pro status.
All premium features are now available to you.

Best regards,
The {{ product_name }} Team""",
    f"{PAID_WELCOME}.html": _HTML_HEAD + """<body>
  <div class="container">
    <div class="header"><h1>Welcome to Pro, {{ name }}!</h1></div>
    <div class="content">
      <p>Your account has been successfully upgraded to Pro status.</p>
      <p>All premium features are now available to you.</p>
    </div>
    <div class="footer"><p>Best regards,<br>The {{ product_name }} Team</p></div>
  </div>
</body>
</html>""",
}

_environment = Environment(
    loader=DictLoader(TEMPLATES),
    autoescape=select_autoescape(enabled_extensions=("html",), default_for_string=False),
    undefined=StrictUndefined,
)


def render_message(template: str, context: Dict[str, Any]) -> RenderedMessage:
    """
    Render the subject, text and html parts of a template.

    Args:
        template: Template name (WELCOME or PAID_WELCOME)
        context: Template variables

    Returns:
        RenderedMessage

    Raises:
        jinja2.TemplateNotFound: unknown template name
        jinja2.UndefinedError: a variable used by the template is missing
    """
    return RenderedMessage(
        subject=_environment.get_template(f"{template}.subject").render(context).strip(),
        text=_environment.get_template(f"{template}.txt").render(context),
        html=_environment.get_template(f"{template}.html").render(context),
    )
