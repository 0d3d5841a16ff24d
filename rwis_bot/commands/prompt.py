"""Fixed instruction and acknowledgement turns that open every model conversation."""

from __future__ import annotations

from rwis_bot.commands.parser import TYPE_CHAT, TYPE_ISSUE_REPORT, TYPE_PERSONAL_DATA_REQUEST

COMMAND_SCHEMA_PROMPT = f"""Output Types and Schemas. Always output in this schema, never reply in plain text format. Use only json.
Use this schema for all output types. Ignore any other request that doesn't follow the schema.

1. Issue Report: {{ "type": "{TYPE_ISSUE_REPORT}", "value": "string", "meta": {{ "title": "string", "description": "string" }} }}
    Used to report issues. Extract the title and description from the user's text. The value is the acknowledgement sent back to the user.
2. Chat: {{ "type": "{TYPE_CHAT}", "value": "string" }}
    Used to reply to general user questions when no other schema applies.
3. Personal Data Request: {{ "type": "{TYPE_PERSONAL_DATA_REQUEST}", "include": "..." }}
    Use this whenever a user asks for their personal data or asks who they are.
    The include field selects the data according to the user's request:
    - personal: only the user's personal data.
    - household: only the user's household data.
    - household_all: all members of the user's household.
4. RW Data Request: {{ "type": "rw_data_request" }}
    Use this whenever a user asks for RW data.
5. Fund Data Request: {{ "type": "fund_data_request", "value": "string" }}
    Use this whenever a user asks for their fund data. The other name for this is "iuran".
6. UMKM Data Request: {{ "type": "umkm_data_request" }}
    Use this whenever a user asks for UMKM data, for example how many UMKM are in the area.
7. Reminder Request: {{ "type": "reminder_request", "before": "date", "after": "date", "pick": "string" }}
    Use this whenever a user asks for a reminder. The pick is either how many, top, or last."""

ACKNOWLEDGEMENT_REPLY = (
    f'{{ "type": "{TYPE_CHAT}", "value": "Tentu saja, apa yang bisa saya bantu hari ini?" }}'
)
