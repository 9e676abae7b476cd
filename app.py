# app.py - Free Fire Arena Tournament Backend Application
# This file handles API endpoints for tournaments, player registrations,
# room credentials, featured tournaments, winners and admin functionalities,
# interacting with Google Firestore.

# =====================================================================
# IMPORTS
# =====================================================================
import firebase_admin
from firebase_admin import credentials, firestore
from flask import Flask, request, jsonify, Response
from datetime import datetime, timedelta, timezone # Used for time calculations and timestamps
from flask_cors import CORS # Required for handling Cross-Origin Resource Sharing
from dotenv import load_dotenv # For loading environment variables from .env file
from apscheduler.schedulers.background import BackgroundScheduler
from urllib.parse import urlencode, quote
import os
import io
import csv
import traceback # For printing full tracebacks during debugging
import requests # For Telegram notifications
import json

from lifecycle_timer import (
    ACTIVE_STATUSES,
    COMPLETED_STATUSES,
    PHASE_STARTED,
    PHASE_UPCOMING,
    compute_for_tournament,
)
from countdown import CountdownWatcher
from featured import (
    SETTING_KEY_PREFIX,
    TOURNAMENT_TYPES,
    build_template_override,
    find_default_template,
    merge_featured_templates,
    setting_key_for,
)

# =====================================================================
# LOAD ENVIRONMENT VARIABLES
# =====================================================================
load_dotenv() # Loads variables from .env file into os.environ

# =====================================================================
# FLASK APP CONFIGURATION
# =====================================================================
app = Flask(__name__)
# IMPORTANT: Set FLASK_SECRET_KEY to a strong, random, and unique secret key in production.
app.secret_key = os.environ.get('FLASK_SECRET_KEY', 'dev_only_secret_key_change_this_in_prod')

CORS_ORIGINS = [o.strip() for o in os.getenv('CORS_ORIGINS', 'https://www.freefirearena.in').split(',') if o.strip()]
CORS(app, resources={r"/api/*": {"origins": CORS_ORIGINS}})

# Schedules entered by admins are interpreted in this fixed offset (IST by default)
SCHEDULE_UTC_OFFSET_MINUTES = int(os.getenv('SCHEDULE_UTC_OFFSET_MINUTES', '330'))
SCHEDULE_TIMEZONE = timezone(timedelta(minutes=SCHEDULE_UTC_OFFSET_MINUTES))

COUNTDOWN_INTERVAL_SECONDS = int(os.getenv('COUNTDOWN_INTERVAL_SECONDS', '1'))

# Scheduler is started by the startup tasks, not at import time
scheduler = BackgroundScheduler(timezone=SCHEDULE_TIMEZONE)


# =====================================================================
# FIREBASE INITIALIZATION
# =====================================================================
# The service account key JSON comes from Firebase Console -> Project settings -> Service accounts.

db = None

try:
    firebase_key = os.getenv("FIREBASE_SERVICE_ACCOUNT_KEY_JSON")

    if not firebase_key:
        raise ValueError("FIREBASE_SERVICE_ACCOUNT_KEY_JSON env variable missing!")

    print("🔐 Raw key loaded from environment, parsing JSON...")

    key_data = json.loads(firebase_key)
    key_data["private_key"] = key_data["private_key"].replace("\\n", "\n")

    if not firebase_admin._apps:
        cred = credentials.Certificate(key_data)
        firebase_admin.initialize_app(cred)
        print("✅ Firebase Admin SDK initialized")

    db = firestore.client()

except Exception as e:
    print(f"🚨 Firebase initialization failed: {e}")


# =====================================================================
# GLOBAL VARIABLES
# =====================================================================
ADMIN_UID = os.getenv('ADMIN_UID', 'YOUR_ADMIN_UID_HERE')

# Telegram Bot Configuration
TELEGRAM_BOT_TOKEN = os.getenv('TELEGRAM_BOT_TOKEN', 'YOUR_TELEGRAM_BOT_TOKEN')
TELEGRAM_CHAT_ID = os.getenv('TELEGRAM_CHAT_ID', 'YOUR_TELEGRAM_CHAT_ID')

# Entry fees are paid to a fixed UPI handle. Payments are confirmed manually by admins.
UPI_ID = os.getenv('UPI_ID', 'freefirearena@upi')
UPI_PAYEE_NAME = os.getenv('UPI_PAYEE_NAME', 'Free Fire Arena')

PAYMENT_STATUSES = ('pending', 'completed', 'failed')
TOURNAMENT_STATUSES = ('upcoming',) + tuple(sorted(ACTIVE_STATUSES)) + tuple(sorted(COMPLETED_STATUSES))

CSV_COLUMNS = ['Registration ID', 'Player', 'In-Game Name', 'Tournament Type', 'Slot Time', 'Payment Status', 'Registered At']

startup_tasks_done = False


# =====================================================================
# HELPER FUNCTIONS
# =====================================================================

def current_time():
    """Clock used for every lifecycle computation."""
    return datetime.now(SCHEDULE_TIMEZONE)


def is_admin(user_id):
    """Checks if the given user_id matches the configured ADMIN_UID."""
    if not ADMIN_UID or ADMIN_UID == 'YOUR_ADMIN_UID_HERE':
        print("WARNING: ADMIN_UID is empty or default. Admin functionality might be insecure or disabled.")
        return False
    return user_id == ADMIN_UID


def format_timestamp(timestamp_obj):
    """
    Formats a Firestore Timestamp object or datetime object into a readable string
    in the schedule timezone.
    """
    if timestamp_obj is None:
        return "N/A"
    if isinstance(timestamp_obj, datetime):
        # Naive datetimes are assumed to be UTC
        if timestamp_obj.tzinfo is None:
            timestamp_obj = timestamp_obj.replace(tzinfo=timezone.utc)
        return timestamp_obj.astimezone(SCHEDULE_TIMEZONE).strftime('%Y-%m-%d %H:%M:%S')
    elif hasattr(timestamp_obj, 'to_datetime'): # For google.cloud.firestore.Timestamp objects
        return timestamp_obj.to_datetime().astimezone(SCHEDULE_TIMEZONE).strftime('%Y-%m-%d %H:%M:%S')
    return str(timestamp_obj)


def format_time_to_12hr(time_24hr_str):
    """Converts a 'HH:MM' string to 'hh:mm AM/PM' format."""
    try:
        time_obj = datetime.strptime(time_24hr_str, '%H:%M').time()
        return time_obj.strftime('%I:%M %p')
    except (TypeError, ValueError):
        print(f"Warning: Could not parse 24-hour time '{time_24hr_str}'.")
        return time_24hr_str


def send_telegram_message(message, parse_mode="Markdown"):
    """Sends a message to the configured Telegram chat."""
    if not TELEGRAM_BOT_TOKEN or not TELEGRAM_CHAT_ID or TELEGRAM_BOT_TOKEN == 'YOUR_TELEGRAM_BOT_TOKEN' or TELEGRAM_CHAT_ID == 'YOUR_TELEGRAM_CHAT_ID':
        print("Telegram bot token or chat ID not configured. Skipping Telegram message.")
        return False

    telegram_api_url = f"https://api.telegram.org/bot{TELEGRAM_BOT_TOKEN}/sendMessage"
    telegram_payload = {
        "chat_id": TELEGRAM_CHAT_ID,
        "text": message,
        "parse_mode": parse_mode
    }
    try:
        response = requests.post(telegram_api_url, json=telegram_payload, timeout=10)
        response.raise_for_status() # Raise an exception for HTTP errors
        print("Telegram message sent successfully.")
    except requests.exceptions.RequestException as e:
        print(f"Error sending Telegram message: {e}")
        traceback.print_exc()
        return False
    return True


def build_upi_link(amount, note):
    """UPI deep link understood by every UPI app; the frontend renders it as a QR code."""
    params = {
        'pa': UPI_ID,
        'pn': UPI_PAYEE_NAME,
        'am': f"{float(amount):.2f}",
        'cu': 'INR',
        'tn': note,
    }
    return 'upi://pay?' + urlencode(params, quote_via=quote)


def build_whatsapp_share_link(tournament_name, room_id, room_password):
    message = f"🎮 {tournament_name} - Room Details:\n\nRoom ID: {room_id}\nPassword: {room_password}\n\nJoin now!"
    return 'https://wa.me/?text=' + quote(message)


def lifecycle_for(tournament):
    return compute_for_tournament(tournament, now=current_time, tz=SCHEDULE_TIMEZONE)


def tournament_to_dict(doc, include_room=False):
    """Firestore tournament document -> API dict with lifecycle info. Room credentials stay hidden unless asked for."""
    data = doc.to_dict()
    data['id'] = doc.id
    data['hasRoomCredentials'] = bool(data.get('room_id') and data.get('room_password'))
    if not include_room:
        data.pop('room_id', None)
        data.pop('room_password', None)
    data['time12hr'] = format_time_to_12hr(data.get('scheduled_time'))
    for field in ('created_at', 'updated_at'):
        if field in data:
            data[field] = format_timestamp(data.get(field))
    data['lifecycle'] = lifecycle_for(data).to_dict()
    return data


def get_tournament_doc(tournament_id):
    doc = db.collection('tournaments').document(tournament_id).get()
    if not doc.exists:
        return None
    return doc


def parse_non_negative_int(value, field_name):
    try:
        number = int(value)
    except (TypeError, ValueError):
        raise ValueError(f"{field_name} must be a whole number.")
    if number < 0:
        raise ValueError(f"{field_name} cannot be negative.")
    return number


def validate_tournament_form(data):
    """Validates the admin 'Create Tournament' form. Raises ValueError on bad input."""
    name = (data.get('name') or '').strip()
    tournament_type = data.get('type')
    scheduled_date = data.get('scheduled_date')
    scheduled_time = data.get('scheduled_time')

    if not name:
        raise ValueError("Tournament name is required.")
    if tournament_type not in TOURNAMENT_TYPES:
        raise ValueError(f"Tournament type must be one of {', '.join(TOURNAMENT_TYPES)}.")
    try:
        datetime.strptime(scheduled_date or '', '%Y-%m-%d')
    except ValueError:
        raise ValueError("Scheduled date must be in YYYY-MM-DD format.")
    try:
        datetime.strptime(scheduled_time or '', '%H:%M')
    except ValueError:
        raise ValueError("Scheduled time must be in HH:MM (24h) format.")

    max_participants = parse_non_negative_int(data.get('max_participants', 100), 'Max participants')
    if max_participants == 0:
        raise ValueError("Max participants must be positive.")

    return {
        'name': name,
        'type': tournament_type,
        'scheduled_date': scheduled_date,
        'scheduled_time': scheduled_time,
        'prize_pool': parse_non_negative_int(data.get('prize_pool', 0), 'Prize pool'),
        'entry_fee': parse_non_negative_int(data.get('entry_fee', 0), 'Entry fee'),
        'max_participants': max_participants,
        'admin_notes': data.get('admin_notes') or None,
        'status': 'upcoming',
        'room_id': None,
        'room_password': None,
    }


def get_player(user_id):
    doc = db.collection('players').document(user_id).get()
    if not doc.exists:
        return None
    player = doc.to_dict()
    player['id'] = doc.id
    return player


def load_registration_rows():
    """All registrations joined with their player's names, newest first."""
    players_cache = {}
    rows = []
    for doc in db.collection('tournament_registrations').stream():
        reg = doc.to_dict()
        reg['id'] = doc.id
        player_id = reg.get('player_id')
        if player_id and player_id not in players_cache:
            players_cache[player_id] = get_player(player_id)
        player = players_cache.get(player_id) or {}
        reg['player'] = {
            'username': player.get('username', 'N/A'),
            'in_game_name': player.get('in_game_name'),
        }
        rows.append(reg)

    # Newest first on the raw timestamp; registrations without one go last
    rows.sort(key=lambda r: timestamp_sort_key(r.get('created_at')), reverse=True)
    for reg in rows:
        reg['created_at'] = format_timestamp(reg.get('created_at'))
    return rows


def timestamp_sort_key(timestamp_obj):
    if timestamp_obj is None:
        return (0, 0.0)
    if hasattr(timestamp_obj, 'to_datetime'):
        timestamp_obj = timestamp_obj.to_datetime()
    if isinstance(timestamp_obj, datetime):
        if timestamp_obj.tzinfo is None:
            timestamp_obj = timestamp_obj.replace(tzinfo=timezone.utc)
        return (1, timestamp_obj.timestamp())
    return (0, 0.0)


def parse_limit(default):
    try:
        limit = int(request.args.get('limit', default))
    except (TypeError, ValueError):
        raise ValueError("Limit must be a whole number.")
    if limit <= 0:
        raise ValueError("Limit must be positive.")
    return limit


def increment_player_stats(writer, player_id, played=0, won=0, earnings=0):
    """Adds to a player's stats through a batch or a transaction (both expose set(merge=True))."""
    stats_ref = db.collection('player_stats').document(player_id)
    writer.set(stats_ref, {
        'player_id': player_id,
        'tournaments_played': firestore.Increment(played),
        'tournaments_won': firestore.Increment(won),
        'total_earnings': firestore.Increment(earnings),
        'updated_at': firestore.SERVER_TIMESTAMP,
    }, merge=True)


# =====================================================================
# COUNTDOWN WATCHER
# =====================================================================

def handle_phase_change(tournament_id, old_phase, view):
    """
    Called from the scheduler thread when a watched tournament changes phase.
    Only 'upcoming' tournaments need a running countdown, so any other phase
    releases the job. The start notification is only sent when the clock
    reached the scheduled time; admin status changes notify on their own.
    """
    if view.phase != PHASE_UPCOMING:
        countdown_watcher.unwatch(tournament_id)
    if not (old_phase == PHASE_UPCOMING and view.phase == PHASE_STARTED):
        return
    if view.status in ACTIVE_STATUSES:
        return
    try:
        doc = get_tournament_doc(tournament_id)
        if doc is None:
            return
        tournament = doc.to_dict()
        has_room = bool(tournament.get('room_id') and tournament.get('room_password'))
        print(f"[INFO] Tournament {tournament_id} reached its scheduled time.")
        send_telegram_message(
            f"⏰ *{tournament.get('name')}* ({str(tournament.get('type', '')).upper()}) has reached its start time.\n"
            f"Room credentials set: {'Yes' if has_room else 'No - set them now!'}"
        )
    except Exception as e:
        print(f"Error handling start of tournament {tournament_id}: {e}")
        traceback.print_exc()


countdown_watcher = CountdownWatcher(
    scheduler,
    clock=current_time,
    tz=SCHEDULE_TIMEZONE,
    on_phase_change=handle_phase_change,
    interval_seconds=COUNTDOWN_INTERVAL_SECONDS,
)


def track_countdown(tournament):
    """Keeps a live countdown only while the tournament is still upcoming."""
    if lifecycle_for(tournament).phase == PHASE_UPCOMING:
        countdown_watcher.watch(tournament)
    else:
        countdown_watcher.unwatch(tournament['id'])


def sync_countdowns():
    """Watches every tournament that is still counting down to its start."""
    print("⏱️ Syncing tournament countdowns...")
    try:
        upcoming = []
        for doc in db.collection('tournaments').stream():
            data = doc.to_dict()
            data['id'] = doc.id
            if lifecycle_for(data).phase == PHASE_UPCOMING:
                upcoming.append(data)
        countdown_watcher.sync(upcoming)
        print(f"✅ Watching {len(countdown_watcher)} tournament countdowns")
    except Exception as e:
        print(f"❌ Error syncing tournament countdowns: {e}")
        traceback.print_exc()


def run_startup_tasks():
    """Runs critical initialization tasks at app startup."""
    print("🚀 Running startup tasks...")
    if not scheduler.running:
        scheduler.start()
        print("⏰ Countdown scheduler started")
    sync_countdowns()
    print("✅ Startup tasks completed")


@app.before_request
def run_startup_tasks_once():
    global startup_tasks_done
    if startup_tasks_done or app.testing:
        return
    startup_tasks_done = True
    run_startup_tasks()


# =====================================================================
# API ENDPOINTS - Public Facing (Read-only or Player Actions)
# =====================================================================

@app.route('/api/tournaments', methods=['GET'])
def get_tournaments_api():
    """All tournaments ordered by schedule, each with its live lifecycle (phase + countdown)."""
    try:
        tournaments = [tournament_to_dict(doc) for doc in db.collection('tournaments').stream()]
        tournaments.sort(key=lambda t: (t.get('scheduled_date') or '', t.get('scheduled_time') or ''))
        print(f"API: Serving {len(tournaments)} tournaments with countdown data to frontend.")
        return jsonify({"success": True, "tournaments": tournaments}), 200
    except Exception as e:
        print(f"Error fetching tournaments: {e}")
        traceback.print_exc()
        return jsonify({"success": False, "message": f"Server error fetching tournaments: {e}"}), 500


@app.route('/api/tournaments/<tournament_id>', methods=['GET'])
def get_tournament_api(tournament_id):
    try:
        doc = get_tournament_doc(tournament_id)
        if doc is None:
            return jsonify({"success": False, "message": "Tournament not found."}), 404
        return jsonify({"success": True, "tournament": tournament_to_dict(doc)}), 200
    except Exception as e:
        print(f"Error fetching tournament {tournament_id}: {e}")
        traceback.print_exc()
        return jsonify({"success": False, "message": f"Server error fetching tournament: {e}"}), 500


@app.route('/api/tournaments/<tournament_id>/timer', methods=['GET'])
def get_tournament_timer_api(tournament_id):
    """Lifecycle only. Served from the live countdown when one is running."""
    try:
        view = countdown_watcher.view_for(tournament_id)
        if view is None:
            doc = get_tournament_doc(tournament_id)
            if doc is None:
                return jsonify({"success": False, "message": "Tournament not found."}), 404
            view = lifecycle_for(doc.to_dict())
        return jsonify({"success": True, "tournamentId": tournament_id, "lifecycle": view.to_dict()}), 200
    except Exception as e:
        print(f"Error computing timer for tournament {tournament_id}: {e}")
        traceback.print_exc()
        return jsonify({"success": False, "message": f"Server error computing timer: {e}"}), 500


@app.route('/api/tournaments/<tournament_id>/room', methods=['GET'])
def get_room_credentials_api(tournament_id):
    """
    Room ID and password for a registered player. Only revealed once the
    tournament has started (by the clock or by an admin).
    """
    user_id = request.args.get('userId')
    if not user_id:
        return jsonify({"success": False, "message": "User ID is required."}), 400

    try:
        doc = get_tournament_doc(tournament_id)
        if doc is None:
            return jsonify({"success": False, "message": "Tournament not found."}), 404
        tournament = doc.to_dict()

        registrations = db.collection('tournament_registrations')\
                          .where('tournament_id', '==', tournament_id)\
                          .where('player_id', '==', user_id)\
                          .get()
        if not any(r.to_dict().get('payment_status') != 'failed' for r in registrations):
            return jsonify({"success": False, "message": "You are not registered for this tournament."}), 403

        view = lifecycle_for(tournament)
        room_id = tournament.get('room_id')
        room_password = tournament.get('room_password')

        if view.phase != PHASE_STARTED or not (room_id and room_password):
            return jsonify({
                "success": True,
                "available": False,
                "message": "Room credentials will be available when the tournament starts.",
                "lifecycle": view.to_dict(),
            }), 200

        return jsonify({
            "success": True,
            "available": True,
            "roomId": room_id,
            "roomPassword": room_password,
            "shareLink": build_whatsapp_share_link(tournament.get('name', 'Tournament'), room_id, room_password),
            "lifecycle": view.to_dict(),
        }), 200
    except Exception as e:
        print(f"Error fetching room credentials: {e}")
        traceback.print_exc()
        return jsonify({"success": False, "message": f"Server error fetching room credentials: {e}"}), 500


@app.route('/api/featured_tournaments', methods=['GET'])
def get_featured_tournaments_api():
    try:
        featured_docs = [d for d in db.collection('featured_tournaments').where('is_featured', '==', True).stream()]
        featured_docs.sort(key=lambda d: d.to_dict().get('display_order') or 0)

        tournaments = []
        for featured_doc in featured_docs:
            tournament_id = featured_doc.to_dict().get('tournament_id')
            doc = get_tournament_doc(tournament_id) if tournament_id else None
            if doc is None:
                print(f"Warning: Featured entry {featured_doc.id} points at missing tournament '{tournament_id}'. Skipping.")
                continue
            tournament = tournament_to_dict(doc)
            tournament['featuredId'] = featured_doc.id
            tournaments.append(tournament)

        return jsonify({"success": True, "featuredTournaments": tournaments}), 200
    except Exception as e:
        print(f"Error fetching featured tournaments: {e}")
        traceback.print_exc()
        return jsonify({"success": False, "message": f"Server error fetching featured tournaments: {e}"}), 500


def load_saved_template_settings():
    saved = {}
    for doc in db.collection('settings').stream():
        setting = doc.to_dict()
        key = setting.get('setting_key', doc.id)
        if key.startswith(SETTING_KEY_PREFIX):
            saved[key] = setting.get('setting_value')
    return saved


@app.route('/api/featured_templates', methods=['GET'])
def get_featured_templates_api():
    try:
        templates = merge_featured_templates(load_saved_template_settings())
        return jsonify({"success": True, "templates": templates}), 200
    except Exception as e:
        print(f"Error loading featured templates: {e}")
        traceback.print_exc()
        return jsonify({"success": False, "message": f"Server error loading featured templates: {e}"}), 500


@app.route('/api/winners', methods=['GET'])
def get_winners_api():
    try:
        limit = parse_limit(20)
        docs = db.collection('winners').order_by('created_at', direction=firestore.Query.DESCENDING).limit(limit).stream()
        winners = []
        for doc in docs:
            winner = doc.to_dict()
            winner['id'] = doc.id
            winner['created_at'] = format_timestamp(winner.get('created_at'))
            winners.append(winner)
        return jsonify({"success": True, "winners": winners}), 200
    except ValueError as ve:
        return jsonify({"success": False, "message": str(ve)}), 400
    except Exception as e:
        print(f"Error fetching winners: {e}")
        traceback.print_exc()
        return jsonify({"success": False, "message": f"Server error fetching winners: {e}"}), 500


@app.route('/api/players', methods=['POST'])
def upsert_player_api():
    """Creates or updates the player profile linked to the signed-in user's UID."""
    data = request.json or {}
    user_id = data.get('userId')
    email = data.get('email')
    username = (data.get('username') or '').strip()

    if not all([user_id, email, username]):
        return jsonify({"success": False, "message": "User ID, email and username are required."}), 400

    try:
        player_ref = db.collection('players').document(user_id)
        existing = player_ref.get()
        profile = {
            'auth_uid': user_id,
            'email': email,
            'username': username,
            'in_game_name': data.get('inGameName') or None,
            'free_fire_uid': data.get('freeFireUid') or None,
            'updated_at': firestore.SERVER_TIMESTAMP,
        }
        if not existing.exists:
            profile['created_at'] = firestore.SERVER_TIMESTAMP
        player_ref.set(profile, merge=True)
        return jsonify({"success": True, "message": "Player profile saved.", "created": not existing.exists}), 200
    except Exception as e:
        print(f"Error saving player profile: {e}")
        traceback.print_exc()
        return jsonify({"success": False, "message": f"Failed to save player profile: {e}"}), 500


@app.route('/api/player_stats', methods=['GET'])
def get_player_stats_api():
    user_id = request.args.get('userId')
    if not user_id:
        return jsonify({"success": False, "message": "User ID is required."}), 400

    try:
        stats = {'tournaments_played': 0, 'tournaments_won': 0, 'total_earnings': 0}
        doc = db.collection('player_stats').document(user_id).get()
        if doc.exists:
            saved = doc.to_dict()
            for key in stats:
                stats[key] = saved.get(key, 0) or 0
        return jsonify({"success": True, "stats": stats}), 200
    except Exception as e:
        print(f"Error fetching player stats: {e}")
        traceback.print_exc()
        return jsonify({"success": False, "message": f"Failed to fetch player stats: {e}"}), 500


@app.route('/api/register', methods=['POST'])
def register_for_tournament():
    """
    Registers a player. Either `tournamentId` (a scheduled tournament) or
    `tournamentType` + `slotTime` (a daily slot) must be given. The registration
    starts with payment_status 'pending' and the response carries the UPI link.
    """
    data = request.json or {}
    user_id = data.get('userId')
    tournament_id = data.get('tournamentId')

    if not user_id:
        return jsonify({"success": False, "message": "User ID is required."}), 400

    try:
        player = get_player(user_id)
        if player is None:
            raise ValueError("Complete your player profile before registering.")

        entry_fee = 0
        tournament_name = None
        if tournament_id:
            if get_tournament_doc(tournament_id) is None:
                return jsonify({"success": False, "message": "Tournament not found."}), 404

            tournament_ref = db.collection('tournaments').document(tournament_id)
            # One document per player and tournament, so a second attempt collides with the first
            reg_ref = db.collection('tournament_registrations').document(f"{tournament_id}_{user_id}")

            # Capacity, duplicate and phase checks run in the same transaction as the writes
            @firestore.transactional
            def register_transaction(transaction):
                snapshot = tournament_ref.get(transaction=transaction)
                if not snapshot.exists:
                    raise ValueError("Tournament not found.")
                tournament = snapshot.to_dict()
                if lifecycle_for(tournament).phase != PHASE_UPCOMING:
                    raise ValueError("Registration is closed: this tournament has already started.")

                own = reg_ref.get(transaction=transaction)
                existing = db.collection('tournament_registrations')\
                             .where('tournament_id', '==', tournament_id)\
                             .get(transaction=transaction)
                active = [r.to_dict() for r in existing if r.to_dict().get('payment_status') != 'failed']
                if (own.exists and own.to_dict().get('payment_status') != 'failed') \
                        or any(r.get('player_id') == user_id for r in active):
                    raise ValueError("You are already registered for this tournament.")
                if len(active) >= int(tournament.get('max_participants') or 0):
                    raise ValueError("Tournament is full.")

                transaction.set(reg_ref, {
                    'player_id': user_id,
                    'tournament_id': tournament_id,
                    'tournament_type': tournament.get('type'),
                    'slot_time': tournament.get('scheduled_time'),
                    'payment_status': 'pending',
                    'created_at': firestore.SERVER_TIMESTAMP,
                })
                # Concurrent registrations for this tournament conflict on this write
                transaction.update(tournament_ref, {
                    'registered_count': len(active) + 1,
                    'updated_at': firestore.SERVER_TIMESTAMP,
                })
                increment_player_stats(transaction, user_id, played=1)
                return tournament

            tournament = register_transaction(db.transaction())
            tournament_type = tournament.get('type')
            slot_time = tournament.get('scheduled_time')
            entry_fee = tournament.get('entry_fee', 0) or 0
            tournament_name = tournament.get('name')
        else:
            tournament_type = data.get('tournamentType')
            slot_time = data.get('slotTime')
            if tournament_type not in TOURNAMENT_TYPES:
                raise ValueError(f"Tournament type must be one of {', '.join(TOURNAMENT_TYPES)}.")
            if not slot_time:
                raise ValueError("Slot time is required.")

            batch = db.batch()
            reg_ref = db.collection('tournament_registrations').document()
            batch.set(reg_ref, {
                'player_id': user_id,
                'tournament_id': None,
                'tournament_type': tournament_type,
                'slot_time': slot_time,
                'payment_status': 'pending',
                'created_at': firestore.SERVER_TIMESTAMP,
            })
            increment_player_stats(batch, user_id, played=1)
            batch.commit()

        send_telegram_message(
            f"🎉 New Registration!\n"
            f"Player: {player.get('username')} ({player.get('in_game_name') or 'no IGN'})\n"
            f"Tournament: {tournament_name or str(tournament_type).upper()} at {slot_time}\n"
            f"Entry Fee: ₹{entry_fee} (payment pending)"
        )

        note = f"{tournament_name or str(tournament_type).upper()} entry {reg_ref.id}"
        return jsonify({
            "success": True,
            "message": "Registered for tournament!",
            "registrationId": reg_ref.id,
            "payment": {
                "amount": entry_fee,
                "upiId": UPI_ID,
                "upiLink": build_upi_link(entry_fee, note) if entry_fee else None,
            },
        }), 200

    except ValueError as ve:
        print(f"Registration validation error: {ve}")
        return jsonify({"success": False, "message": str(ve)}), 400
    except Exception as e:
        print(f"Error registering for tournament: {e}")
        traceback.print_exc()
        return jsonify({"success": False, "message": "An unexpected error occurred during registration."}), 500


@app.route('/api/registrations', methods=['GET'])
def get_registrations():
    user_id = request.args.get('userId')
    if not user_id:
        return jsonify({"success": False, "message": "User ID is required to fetch registrations."}), 400

    try:
        limit = parse_limit(5)
        docs = db.collection('tournament_registrations')\
                 .where('player_id', '==', user_id)\
                 .order_by('created_at', direction=firestore.Query.DESCENDING)\
                 .limit(limit)\
                 .get()

        registrations_list = []
        for doc in docs:
            data = doc.to_dict()
            data['id'] = doc.id
            data['created_at'] = format_timestamp(data.get('created_at'))
            data['payment_status'] = data.get('payment_status') or 'pending'
            registrations_list.append(data)

        return jsonify({"success": True, "registrations": registrations_list}), 200
    except ValueError as ve:
        return jsonify({"success": False, "message": str(ve)}), 400
    except Exception as e:
        print(f"Error fetching user registrations: {e}")
        traceback.print_exc()
        return jsonify({"success": False, "message": f"Failed to fetch registrations: {str(e)}"}), 500


@app.route('/api/payment/upi', methods=['GET'])
def get_upi_payment_api():
    tournament_id = request.args.get('tournamentId')
    if not tournament_id:
        return jsonify({"success": False, "message": "Tournament ID is required."}), 400
    try:
        doc = get_tournament_doc(tournament_id)
        if doc is None:
            return jsonify({"success": False, "message": "Tournament not found."}), 404
        tournament = doc.to_dict()
        amount = tournament.get('entry_fee', 0) or 0
        return jsonify({
            "success": True,
            "amount": amount,
            "upiId": UPI_ID,
            "payeeName": UPI_PAYEE_NAME,
            "upiLink": build_upi_link(amount, f"{tournament.get('name')} entry fee"),
        }), 200
    except Exception as e:
        print(f"Error building UPI payment link: {e}")
        traceback.print_exc()
        return jsonify({"success": False, "message": f"Server error: {e}"}), 500


# =====================================================================
# ADMIN API ROUTES (Requires ADMIN_UID authorization)
# =====================================================================

@app.route('/api/admin/tournaments', methods=['POST'])
def create_tournament_api_admin():
    data = request.json or {}
    admin_user_id = data.get('adminUserId')
    if not is_admin(admin_user_id):
        return jsonify({"success": False, "message": "Unauthorized: Admin privileges required."}), 403

    try:
        tournament = validate_tournament_form(data)
        tournament['created_at'] = firestore.SERVER_TIMESTAMP
        tournament['updated_at'] = firestore.SERVER_TIMESTAMP
        _, doc_ref = db.collection('tournaments').add(tournament)

        track_countdown({**tournament, 'id': doc_ref.id})
        print(f"Admin {admin_user_id} created tournament {doc_ref.id} ({tournament['name']}).")
        return jsonify({"success": True, "message": "Tournament created successfully!", "tournamentId": doc_ref.id}), 200
    except ValueError as ve:
        return jsonify({"success": False, "message": str(ve)}), 400
    except Exception as e:
        print(f"Error creating tournament (Admin API): {e}")
        traceback.print_exc()
        return jsonify({"success": False, "message": f"Server error creating tournament: {e}"}), 500


@app.route('/api/admin/tournaments/<tournament_id>/room', methods=['POST'])
def update_room_credentials_api_admin(tournament_id):
    data = request.json or {}
    admin_user_id = data.get('adminUserId')
    room_id = (data.get('roomId') or '').strip()
    room_password = (data.get('roomPassword') or '').strip()

    if not is_admin(admin_user_id):
        return jsonify({"success": False, "message": "Unauthorized: Admin privileges required."}), 403
    if not room_id or not room_password:
        return jsonify({"success": False, "message": "Room ID and room password are required."}), 400

    try:
        doc = get_tournament_doc(tournament_id)
        if doc is None:
            return jsonify({"success": False, "message": "Tournament not found."}), 404
        doc.reference.update({
            'room_id': room_id,
            'room_password': room_password,
            'updated_at': firestore.SERVER_TIMESTAMP,
        })
        print(f"Admin {admin_user_id} set room credentials for tournament {tournament_id}.")
        return jsonify({"success": True, "message": "Room credentials updated successfully"}), 200
    except Exception as e:
        print(f"Error updating room credentials (Admin API): {e}")
        traceback.print_exc()
        return jsonify({"success": False, "message": f"Server error updating room credentials: {e}"}), 500


@app.route('/api/admin/tournaments/<tournament_id>/status', methods=['POST'])
def update_tournament_status_api_admin(tournament_id):
    """Admin override of a tournament's status. Every change is recorded in tournament_status_log."""
    data = request.json or {}
    admin_user_id = data.get('adminUserId')
    new_status = str(data.get('status') or '').strip().lower()

    if not is_admin(admin_user_id):
        return jsonify({"success": False, "message": "Unauthorized: Admin privileges required."}), 403
    if new_status not in TOURNAMENT_STATUSES:
        return jsonify({"success": False, "message": f"Status must be one of {', '.join(TOURNAMENT_STATUSES)}."}), 400

    try:
        doc = get_tournament_doc(tournament_id)
        if doc is None:
            return jsonify({"success": False, "message": "Tournament not found."}), 404
        tournament = doc.to_dict()
        old_status = tournament.get('status')
        if old_status == new_status:
            return jsonify({"success": False, "message": f"Tournament is already '{new_status}'."}), 400

        batch = db.batch()
        batch.update(doc.reference, {'status': new_status, 'updated_at': firestore.SERVER_TIMESTAMP})
        batch.set(db.collection('tournament_status_log').document(), {
            'tournament_id': tournament_id,
            'old_status': old_status,
            'new_status': new_status,
            'changed_by': admin_user_id,
            'changed_at': firestore.SERVER_TIMESTAMP,
        })
        batch.commit()

        tournament.update({'id': tournament_id, 'status': new_status})
        track_countdown(tournament)

        send_telegram_message(
            f"*Tournament status changed*\n"
            f"*Tournament:* `{tournament.get('name')}`\n"
            f"*Status:* `{old_status}` → `{new_status}`\n"
            f"*Changed At:* `{current_time().strftime('%Y-%m-%d %H:%M:%S')}`"
        )
        return jsonify({
            "success": True,
            "message": f"Tournament status updated to '{new_status}'.",
            "lifecycle": lifecycle_for(tournament).to_dict(),
        }), 200
    except Exception as e:
        print(f"Error updating tournament status (Admin API): {e}")
        traceback.print_exc()
        return jsonify({"success": False, "message": f"Server error updating tournament status: {e}"}), 500


@app.route('/api/admin/featured_tournaments', methods=['POST'])
def add_featured_tournament_api_admin():
    data = request.json or {}
    admin_user_id = data.get('adminUserId')
    tournament_id = data.get('tournamentId')

    if not is_admin(admin_user_id):
        return jsonify({"success": False, "message": "Unauthorized: Admin privileges required."}), 403
    if not tournament_id:
        return jsonify({"success": False, "message": "Tournament ID is required."}), 400

    try:
        if get_tournament_doc(tournament_id) is None:
            return jsonify({"success": False, "message": "Tournament not found."}), 404

        featured = [d.to_dict() for d in db.collection('featured_tournaments').stream()]
        if any(f.get('tournament_id') == tournament_id for f in featured):
            return jsonify({"success": False, "message": "Tournament is already featured."}), 400

        _, doc_ref = db.collection('featured_tournaments').add({
            'tournament_id': tournament_id,
            'display_order': len(featured),
            'is_featured': True,
            'created_at': firestore.SERVER_TIMESTAMP,
            'updated_at': firestore.SERVER_TIMESTAMP,
        })
        return jsonify({"success": True, "message": "Tournament added to featured list", "featuredId": doc_ref.id}), 200
    except Exception as e:
        print(f"Error adding featured tournament: {e}")
        traceback.print_exc()
        return jsonify({"success": False, "message": f"Server error adding featured tournament: {e}"}), 500


@app.route('/api/admin/featured_tournaments/<featured_id>/delete', methods=['POST'])
def remove_featured_tournament_api_admin(featured_id):
    data = request.json or {}
    admin_user_id = data.get('adminUserId')
    if not is_admin(admin_user_id):
        return jsonify({"success": False, "message": "Unauthorized: Admin privileges required."}), 403

    try:
        doc_ref = db.collection('featured_tournaments').document(featured_id)
        if not doc_ref.get().exists:
            return jsonify({"success": False, "message": "Featured entry not found."}), 404
        doc_ref.delete()
        return jsonify({"success": True, "message": "Tournament removed from featured list"}), 200
    except Exception as e:
        print(f"Error removing featured tournament: {e}")
        traceback.print_exc()
        return jsonify({"success": False, "message": f"Server error removing featured tournament: {e}"}), 500


@app.route('/api/admin/featured_templates/<template_id>', methods=['POST'])
def save_featured_template_api_admin(template_id):
    data = request.json or {}
    admin_user_id = data.get('adminUserId')
    if not is_admin(admin_user_id):
        return jsonify({"success": False, "message": "Unauthorized: Admin privileges required."}), 403

    try:
        current = find_default_template(template_id)
        if current is not None:
            current = merge_featured_templates(load_saved_template_settings(), defaults=[current])[0]
        template = build_template_override(template_id, current, data)
        key = setting_key_for(template_id)
        db.collection('settings').document(key).set({
            'setting_key': key,
            'setting_value': json.dumps(template),
            'updated_at': firestore.SERVER_TIMESTAMP,
        })
        return jsonify({"success": True, "message": "Featured tournament template updated successfully", "template": template}), 200
    except ValueError as ve:
        return jsonify({"success": False, "message": str(ve)}), 400
    except Exception as e:
        print(f"Error saving featured template: {e}")
        traceback.print_exc()
        return jsonify({"success": False, "message": f"Server error saving featured template: {e}"}), 500


@app.route('/api/admin/winners', methods=['POST'])
def add_winner_api_admin():
    """Records a winner and credits the matching player's stats (matched by username or in-game name)."""
    data = request.json or {}
    admin_user_id = data.get('adminUserId')
    player_name = (data.get('playerName') or '').strip()
    tournament_type = data.get('tournamentType')

    if not is_admin(admin_user_id):
        return jsonify({"success": False, "message": "Unauthorized: Admin privileges required."}), 403

    try:
        if not player_name:
            raise ValueError("Player name is required.")
        if tournament_type not in TOURNAMENT_TYPES:
            raise ValueError(f"Tournament type must be one of {', '.join(TOURNAMENT_TYPES)}.")
        prize_amount = data.get('prizeAmount')
        prize_amount = parse_non_negative_int(prize_amount, 'Prize amount') if prize_amount not in (None, '') else None

        batch = db.batch()
        batch.set(db.collection('winners').document(), {
            'player_name': player_name,
            'tournament_type': tournament_type,
            'prize_amount': prize_amount,
            'image_url': data.get('imageUrl') or None,
            'tournament_date': current_time().isoformat(),
            'created_at': firestore.SERVER_TIMESTAMP,
        })

        matched_player_id = None
        for field in ('username', 'in_game_name'):
            matches = db.collection('players').where(field, '==', player_name).limit(1).get()
            if matches:
                matched_player_id = matches[0].id
                break
        if matched_player_id:
            increment_player_stats(batch, matched_player_id, won=1, earnings=prize_amount or 0)
        else:
            print(f"Warning: No player profile matches winner '{player_name}'. Stats not updated.")

        batch.commit()
        return jsonify({
            "success": True,
            "message": "Winner added successfully!",
            "statsUpdated": matched_player_id is not None,
        }), 200
    except ValueError as ve:
        return jsonify({"success": False, "message": str(ve)}), 400
    except Exception as e:
        print(f"Error adding winner: {e}")
        traceback.print_exc()
        return jsonify({"success": False, "message": f"Server error adding winner: {e}"}), 500


@app.route('/api/admin/registrations', methods=['GET'])
def get_all_registrations_api_admin():
    admin_user_id = request.args.get('adminUserId')
    if not is_admin(admin_user_id):
        return jsonify({"success": False, "message": "Unauthorized: Admin privileges required."}), 403

    try:
        registrations = load_registration_rows()
        print(f"Admin {admin_user_id} fetched {len(registrations)} registrations.")
        return jsonify({"success": True, "registrations": registrations}), 200
    except Exception as e:
        print(f"Error fetching all registrations (Admin API): {e}")
        traceback.print_exc()
        return jsonify({"success": False, "message": f"Server error fetching all registrations: {e}"}), 500


@app.route('/api/admin/registrations/<registration_id>/payment_status', methods=['POST'])
def update_payment_status_api_admin(registration_id):
    """Admin confirms (or rejects) a UPI payment after checking it manually."""
    data = request.json or {}
    admin_user_id = data.get('adminUserId')
    payment_status = data.get('paymentStatus')

    if not is_admin(admin_user_id):
        return jsonify({"success": False, "message": "Unauthorized: Admin privileges required."}), 403
    if payment_status not in PAYMENT_STATUSES:
        return jsonify({"success": False, "message": f"Payment status must be one of {', '.join(PAYMENT_STATUSES)}."}), 400

    try:
        doc_ref = db.collection('tournament_registrations').document(registration_id)
        if not doc_ref.get().exists:
            return jsonify({"success": False, "message": "Registration not found."}), 404
        doc_ref.update({'payment_status': payment_status})
        print(f"Admin {admin_user_id} set payment status of {registration_id} to '{payment_status}'.")
        return jsonify({"success": True, "message": f"Payment status updated to '{payment_status}'."}), 200
    except Exception as e:
        print(f"Error updating payment status (Admin API): {e}")
        traceback.print_exc()
        return jsonify({"success": False, "message": f"Server error updating payment status: {e}"}), 500


@app.route('/api/admin/registrations/export', methods=['GET'])
def export_registrations_csv_api_admin():
    """Download every registration as a CSV file."""
    admin_user_id = request.args.get('adminUserId')
    if not is_admin(admin_user_id):
        return jsonify({"success": False, "message": "Unauthorized: Admin privileges required."}), 403

    try:
        output = io.StringIO()
        writer = csv.writer(output)
        writer.writerow(CSV_COLUMNS)
        for reg in load_registration_rows():
            writer.writerow([
                reg['id'],
                reg['player']['username'],
                reg['player']['in_game_name'] or '',
                reg.get('tournament_type', ''),
                reg.get('slot_time', ''),
                reg.get('payment_status') or 'pending',
                reg.get('created_at', ''),
            ])
        csv_content = output.getvalue()
        output.close()

        return Response(
            csv_content,
            mimetype='text/csv',
            headers={'Content-Disposition': 'attachment; filename=registrations.csv'},
        )
    except Exception as e:
        print(f"Error exporting registrations: {e}")
        traceback.print_exc()
        return jsonify({"success": False, "message": f"Server error exporting registrations: {e}"}), 500


# =====================================================================
# APPLICATION STARTUP
# =====================================================================
if __name__ == '__main__':
    run_startup_tasks()
    startup_tasks_done = True
    # use_reloader=False keeps a single scheduler (and a single set of countdown jobs)
    app.run(debug=os.getenv('FLASK_DEBUG') == '1', host='0.0.0.0', port=int(os.getenv('PORT', '5000')), use_reloader=False)
