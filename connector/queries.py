"""GraphQL documents sent to Healthie."""

CURRENT_USER_QUERY = """
query TestConnection {
  currentUser {
    id
    first_name
    last_name
  }
}
"""

_APPOINTMENT_FIELDS = """
    id
    date
    location
    provider {
      id
      first_name
      last_name
      doc_share_id
    }
"""

USERS_WITH_APPOINTMENTS_QUERY = f"""
query GetUsersWithAppointments {{
  users {{
    id
    first_name
    last_name
    has_completed_intake_forms
    next_app {{{_APPOINTMENT_FIELDS}    }}
    appointments {{{_APPOINTMENT_FIELDS}    }}
  }}
}}
"""

CREATE_CONVERSATION_MUTATION = """
mutation CreateConversation($simple_added_users: String!, $name: String) {
  createConversation(input: { simple_added_users: $simple_added_users, name: $name }) {
    conversation { id }
    messages { field message }
  }
}
"""

CREATE_NOTE_MUTATION = """
mutation CreateNote($user_id: String!, $content: String!, $conversation_id: String!) {
  createNote(input: { user_id: $user_id, content: $content, conversation_id: $conversation_id }) {
    note { id content user_id }
    messages { field message }
  }
}
"""
