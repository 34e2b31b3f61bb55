from flask import Blueprint, current_app, jsonify

from gambit import EXTENSION_KEY

main = Blueprint('main', __name__)


@main.route('/')
def index():
    return jsonify({'message': 'Welcome to the Gambit game server!'})


@main.route('/health')
def health():
    vault = current_app.extensions[EXTENSION_KEY].vault
    return jsonify({'status': 'healthy', 'key_mode': vault.mode.value})
