from bulletin.cli import client

client()
