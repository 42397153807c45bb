from poolteam import server


def test_run_options_defaults():
    assert server.run_options({}) == {"host": "0.0.0.0", "port": 8000, "log_level": "info"}


def test_run_options_port_and_tls():
    options = server.run_options(
        {
            "PORT": "9100",
            "UVICORN_LOG_LEVEL": "DEBUG",
            "SSL_CERT_FILE": "cert.pem",
            "SSL_KEY_FILE": "key.pem",
        }
    )
    assert options["port"] == 9100
    assert options["log_level"] == "debug"
    assert (options["ssl_certfile"], options["ssl_keyfile"]) == ("cert.pem", "key.pem")


def test_run_options_ignores_bad_values():
    options = server.run_options({"APP_PORT": "eighty", "SSL_CERT_FILE": "cert.pem"})
    assert options["port"] == 8000
    assert "ssl_certfile" not in options
