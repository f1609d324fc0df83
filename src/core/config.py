from pydantic import Field
from pydantic_settings import BaseSettings

class Settings(BaseSettings):
    app_name: str = Field("invoice-reconciliation-core", alias="APP_NAME")
    app_env: str = Field("dev", alias="APP_ENV")

    # Logging
    log_level: str = Field("INFO", alias="LOG_LEVEL")
    log_json: bool = Field(False, alias="LOG_JSON")

    # Document store (local folder; cloud sync happens outside this service)
    documents_root: str = Field("./documents", alias="DOCUMENTS_ROOT")
    invoices_folder: str = Field("Invoices", alias="INVOICES_FOLDER")
    statements_folder: str = Field("BankStatements", alias="STATEMENTS_FOLDER")

    # Azure Document Intelligence
    az_di_endpoint: str | None = Field(default=None, alias="AZ_DI_ENDPOINT")
    az_di_api_key: str | None = Field(default=None, alias="AZ_DI_API_KEY")
    az_di_model: str = Field("prebuilt-invoice", alias="AZ_DI_MODEL")

    # Name or company of the user, decides incoming vs outgoing invoices
    user_display_name: str | None = Field(default=None, alias="USER_DISPLAY_NAME")

    # Bank statement CSV import defaults
    statement_decimal_separator: str = Field(",", alias="STATEMENT_DECIMAL_SEPARATOR")
    statement_date_format: str = Field("yyyy-MM-dd", alias="STATEMENT_DATE_FORMAT")
    statement_blacklist: str = Field("", alias="STATEMENT_BLACKLIST")  # Comma-separated reference tokens
    csv_sample_lines: int = Field(20, alias="CSV_SAMPLE_LINES")
    csv_sample_rows: int = Field(50, alias="CSV_SAMPLE_ROWS")

    # Reconciliation
    match_window_days: int = Field(7, alias="MATCH_WINDOW_DAYS")

    # CORS allowed origins (comma-separated list for production deployment)
    cors_origins: str = Field("http://localhost:3000,http://127.0.0.1:3000", alias="CORS_ORIGINS")

    # Events (optional Service Bus forwarding)
    service_bus_connection_string: str | None = Field(default=None, alias="SERVICE_BUS_CONNECTION_STRING")
    service_bus_entity: str = Field("reconciliation-events", alias="SERVICE_BUS_ENTITY")

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}

    def blacklist_tokens(self) -> list[str]:
        return [token.strip() for token in self.statement_blacklist.split(",") if token.strip()]

settings = Settings()
