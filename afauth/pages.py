"""Minimal HTML result pages for the OAuth flow"""
from html import escape
from typing import Optional

_LAYOUT = """<!DOCTYPE html>
<html lang="en">
<head>
<meta charset="utf-8">
<meta name="viewport" content="width=device-width, initial-scale=1">
<title>{title} - {service_name}</title>
<style{nonce_attr}>
body {{ font-family: -apple-system, BlinkMacSystemFont, "Segoe UI", sans-serif; background: #f6f8fa; margin: 0; }}
main {{ max-width: 560px; margin: 10vh auto; background: #fff; border: 1px solid #d0d7de; border-radius: 8px; padding: 32px; }}
h1 {{ font-size: 1.5rem; margin-top: 0; }}
code, textarea {{ font-family: ui-monospace, SFMono-Regular, monospace; font-size: 0.85rem; }}
textarea {{ width: 100%; min-height: 120px; }}
</style>
</head>
<body>
<main>
<h1>{title}</h1>
{body}
</main>
</body>
</html>"""


def _render(title: str, body: str, service_name: str, nonce: Optional[str] = None) -> str:
    nonce_attr = f' nonce="{escape(nonce)}"' if nonce else ""
    return _LAYOUT.format(title=escape(title), body=body, service_name=escape(service_name), nonce_attr=nonce_attr)


def render_token_ready_page(
    user_id: str,
    github_login: str,
    service_name: str,
    token: Optional[str] = None,
    nonce: Optional[str] = None,
) -> str:
    body = (
        f"<p>Welcome, <strong>{escape(github_login)}</strong>. Your account is authorized.</p>"
        f"<p>User ID: <code>{escape(user_id)}</code></p>"
    )
    if token:
        body += (
            "<p>Your session token:</p>"
            f"<textarea readonly>{escape(token)}</textarea>"
            "<p>Refresh it with <code>POST /api/token</code> before it expires.</p>"
        )
    return _render("Authentication Successful", body, service_name, nonce)


def render_unauthorized_page(
    admin_contact_email: str,
    admin_contact_name: str,
    service_name: str,
    nonce: Optional[str] = None,
) -> str:
    body = (
        "<p>You signed in with GitHub, but your account has not been granted access yet.</p>"
        f"<p>Please contact {escape(admin_contact_name)} at "
        f'<a href="mailto:{escape(admin_contact_email)}">{escape(admin_contact_email)}</a> to request access.</p>'
    )
    return _render("Access Not Granted", body, service_name, nonce)


def render_error_page(title: str, message: str, service_name: str, nonce: Optional[str] = None) -> str:
    body = (
        f"<p>{escape(message)}</p>"
        '<p><a href="/auth/github">Try again</a></p>'
    )
    return _render(title, body, service_name, nonce)
