"""Engine collaborator: value types, events and the command protocol."""
