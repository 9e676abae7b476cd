# featured.py - Featured tournament templates shown on the landing page
# Admins can override any field of a default template. Overrides are stored as
# JSON strings in the 'settings' collection under 'featured_tournament_<id>'.

import copy
import json

SETTING_KEY_PREFIX = 'featured_tournament_'
TEMPLATE_FIELDS = ('title', 'type', 'time', 'prizePool', 'image', 'maxPlayers')
TOURNAMENT_TYPES = ('solo', 'duo', 'squad')

DEFAULT_FEATURED_TEMPLATES = [
    {'id': 'featured-1', 'title': "Friday Night Battle", 'type': 'solo', 'time': "8:00 PM",
     'prizePool': "5000", 'image': "photo-1581092795360-fd1ca04f0952", 'maxPlayers': 100},
    {'id': 'featured-2', 'title': "Weekend Warriors", 'type': 'duo', 'time': "6:00 PM",
     'prizePool': "10000", 'image': "photo-1605810230434-7631ac76ec81", 'maxPlayers': 50},
    {'id': 'featured-3', 'title': "Squad Championship", 'type': 'squad', 'time': "9:00 PM",
     'prizePool': "25000", 'image': "photo-1519389950473-47ba0277781c", 'maxPlayers': 25},
    {'id': 'featured-4', 'title': "Elite Solo Challenge", 'type': 'solo', 'time': "7:00 PM",
     'prizePool': "3000", 'image': "photo-1488590528505-98d2b5aba04b", 'maxPlayers': 80},
    {'id': 'featured-5', 'title': "Dynamic Duo Derby", 'type': 'duo', 'time': "5:00 PM",
     'prizePool': "8000", 'image': "photo-1526374965328-7f61d4dc18c5", 'maxPlayers': 40},
    {'id': 'featured-6', 'title': "Squad Legends", 'type': 'squad', 'time': "10:00 PM",
     'prizePool': "15000", 'image': "photo-1487058792275-0ad4aaf24ca7", 'maxPlayers': 30},
]


def setting_key_for(template_id):
    return f"{SETTING_KEY_PREFIX}{template_id}"


def find_default_template(template_id):
    for template in DEFAULT_FEATURED_TEMPLATES:
        if template['id'] == template_id:
            return copy.deepcopy(template)
    return None


def merge_featured_templates(saved_settings, defaults=None):
    """
    Overlays saved overrides on the default templates.
    `saved_settings` maps setting_key -> setting_value (JSON string).
    Unparseable overrides are skipped and the default is kept.
    The template id is never overridden.
    """
    if defaults is None:
        defaults = DEFAULT_FEATURED_TEMPLATES
    merged = []
    for template in defaults:
        result = copy.deepcopy(template)
        raw_value = saved_settings.get(setting_key_for(template['id']))
        if raw_value:
            try:
                saved = json.loads(raw_value)
            except (TypeError, ValueError) as e:
                print(f"Error parsing saved template {template['id']}: {e}")
                saved = None
            if isinstance(saved, dict):
                result.update({k: v for k, v in saved.items() if k in TEMPLATE_FIELDS})
        merged.append(result)
    return merged


def build_template_override(template_id, current, changes):
    """
    Applies the edited fields to the current template and validates the result.
    Returns the full template dict to store. Raises ValueError on bad input.
    """
    if current is None:
        raise ValueError(f"Unknown featured template '{template_id}'.")

    updated = dict(current)
    for field in TEMPLATE_FIELDS:
        if field in changes and changes[field] not in (None, ''):
            updated[field] = changes[field]

    if updated['type'] not in TOURNAMENT_TYPES:
        raise ValueError(f"Tournament type must be one of {', '.join(TOURNAMENT_TYPES)}.")
    try:
        updated['maxPlayers'] = int(updated['maxPlayers'])
    except (TypeError, ValueError):
        raise ValueError("Max players must be a whole number.")
    if updated['maxPlayers'] <= 0:
        raise ValueError("Max players must be positive.")
    updated['prizePool'] = str(updated['prizePool'])
    updated['id'] = template_id
    return updated
