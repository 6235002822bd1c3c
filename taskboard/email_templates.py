from html import escape
from typing import Optional


def verification_link(app_url: str, token: str) -> str:
    return f"{app_url}/verify-email.html?token={token}"


def member_register_link(app_url: str) -> str:
    return f"{app_url}/member-register.html"


def verification_email(name: str, link: str, code: str, team_name: Optional[str] = None) -> tuple[str, str, str]:
    subject = f"Verify Your Email - Join {team_name}" if team_name else "Verify Your Email"
    joining = f" to join <strong>{escape(team_name)}</strong>" if team_name else ""
    html = f"""
      <p>Hi {escape(name)},</p>
      <p>Confirm your email address{joining}.</p>
      <p><a href="{link}">Verify my email</a></p>
      <p>Or enter this code: <strong>{code}</strong></p>
      <p>The link and code expire in 60 minutes.</p>
    """
    text = f"Hi {name}, verify your email at {link} or enter code {code}. Valid for 60 minutes."
    return subject, html, text


def team_code_email(name: str, team_name: str, team_code: str, register_link: str) -> tuple[str, str, str]:
    subject = f"Your Team Code for {team_name}"
    html = f"""
      <p>Hi {escape(name)},</p>
      <p>Your team <strong>{escape(team_name)}</strong> is ready.</p>
      <p>Team code: <strong>{team_code}</strong></p>
      <p>Share it with your members; they register at <a href="{register_link}">{register_link}</a>.</p>
    """
    text = f"Team {team_name} is ready. Team code: {team_code}. Members register at {register_link}"
    return subject, html, text


def new_member_email(leader_name: str, member_name: str, member_email: str, team_name: str) -> tuple[str, str, str]:
    subject = f"New Member Request for {team_name}"
    html = f"""
      <p>Hi {escape(leader_name)},</p>
      <p>{escape(member_name)} ({escape(member_email)}) asked to join <strong>{escape(team_name)}</strong>.</p>
      <p>Approve or reject the request from your dashboard.</p>
    """
    text = f"{member_name} ({member_email}) asked to join {team_name}."
    return subject, html, text


def approval_email(member_name: str, leader_name: str, team_name: str, app_url: str) -> tuple[str, str, str]:
    subject = f"Membership Approved - Welcome to {team_name}"
    html = f"""
      <p>Hi {escape(member_name)},</p>
      <p>{escape(leader_name)} approved your membership in <strong>{escape(team_name)}</strong>.</p>
      <p><a href="{app_url}">Log in</a> to pick up your first subtask.</p>
    """
    text = f"{leader_name} approved your membership in {team_name}. Log in at {app_url}"
    return subject, html, text
