"""Android device helpers.

`controller` holds the raw adb transport; `device.ConnectedDevice` is the only
object the rest of the harness talks to. It serializes every operation on one
physical device.
"""
