from flask import Blueprint, current_app, jsonify
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from taleon import db
from taleon.api.auth import google_configured
from taleon.mailer import mail_configured
from taleon.services.ai import ai_configured

main = Blueprint('main', __name__)


@main.route('/')
def index():
    return jsonify({'message': 'Welcome to the TaleOn game server!'})


@main.route('/health')
def health():
    try:
        db.session.execute(text('SELECT 1'))
        database = 'ok'
    except SQLAlchemyError as exc:
        current_app.logger.error(f"[health] database check failed: {exc}")
        db.session.rollback()
        database = 'unavailable'
    status = 200 if database == 'ok' else 503
    return jsonify({
        'status': 'ok' if status == 200 else 'degraded',
        'database': database,
        'ai_configured': ai_configured(),
        'mail_configured': mail_configured(),
        'google_configured': google_configured(),
    }), status
