"""Protocol core for talking to a serial signing device."""
