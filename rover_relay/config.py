from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class ServerConfig(BaseModel):
    """Настройки веб-сервера"""
    host: str = Field("0.0.0.0", description="Адрес для привязки сервера")
    port: int = Field(3000, ge=1, le=65535, description="Порт сервера")
    reload: bool = Field(False, description="Auto-reload при изменении кода (для разработки)")


class DeviceConfig(BaseModel):
    """Настройки связи с ровером"""
    base_address: str = Field("http://192.168.4.1", description="Базовый HTTP адрес устройства")
    telemetry_source_address: str | None = Field(
        None, description="WebSocket адрес телеметрии устройства (None - uplink выключен)"
    )
    request_timeout_s: float = Field(2.0, gt=0.0, le=30.0, description="Таймаут HTTP запроса к устройству")

    # Соглашение для вычисления адреса телеметрии из базового адреса
    telemetry_port: int = Field(82, ge=1, le=65535, description="Порт телеметрии на устройстве")
    telemetry_path: str = Field("/ws", description="Путь телеметрии на устройстве")

    # Подсказка для фронтенда, не участвует в управлении
    camera_stream_url: str | None = Field(
        "http://192.168.4.1:81/stream", description="Адрес видеопотока камеры"
    )


class MovementConfig(BaseModel):
    """Настройки непрерывного движения"""
    repeat_interval_ms: int = Field(200, ge=50, le=2000, description="Период повтора команды при удержании (мс)")


class TelemetryConfig(BaseModel):
    """Настройки рассылки телеметрии"""
    queue_size: int = Field(100, ge=1, le=10000, description="Размер очереди на одного подписчика")
    send_timeout_s: float = Field(1.0, gt=0.0, le=30.0, description="Таймаут отправки одному подписчику")


class UplinkConfig(BaseModel):
    """Настройки канала телеметрии от устройства"""
    reconnect: bool = Field(True, description="Переподключаться после обрыва")
    connect_timeout_s: float = Field(5.0, gt=0.0, le=60.0, description="Таймаут подключения")
    backoff_initial_s: float = Field(1.0, gt=0.0, le=60.0, description="Начальная задержка переподключения")
    backoff_max_s: float = Field(30.0, gt=0.0, le=600.0, description="Максимальная задержка переподключения")


class Config(BaseSettings):
    """Главная конфигурация приложения"""
    model_config = SettingsConfigDict(env_prefix="ROVER_", env_nested_delimiter="__", case_sensitive=False)

    server: ServerConfig = ServerConfig()
    device: DeviceConfig = DeviceConfig()
    movement: MovementConfig = MovementConfig()
    telemetry: TelemetryConfig = TelemetryConfig()
    uplink: UplinkConfig = UplinkConfig()


# Глобальный экземпляр конфигурации
config = Config()
