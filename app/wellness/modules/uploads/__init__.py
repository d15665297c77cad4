"""
Uploads module: upload URLs, multipart uploads, object serving and deletion.
"""
