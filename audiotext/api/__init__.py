# audiotext/api/__init__.py
# ==========================
# API Layer — audiotext
#
# Responsibility:
#   - Expose POST /speech/recognize (multipart: file + language)
#   - Map stage-tagged errors to HTTP status codes
