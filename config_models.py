from dataclasses import dataclass


@dataclass
class AppConfig:
    name: str
    secret_key: str
    base_currency: str
    frontend_url: str
    upload_dir: str
    invoice_number_max_attempts: int


@dataclass
class EmailConfig:
    enabled: bool
    smtp_host: str
    smtp_port: int
    smtp_user: str
    smtp_password: str
    sender: str
    sender_name: str
