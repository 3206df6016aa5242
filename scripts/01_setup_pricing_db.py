import os

import psycopg
from dotenv import load_dotenv
from psycopg import sql
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from pricing_engine.storage import SqlConfigStore, init_db


def create_database_and_user(pg_host, pg_port, pg_superuser, pg_superpass, app_db_name, app_db_user, app_db_password):
    print("🔌 Conectando ao PostgreSQL como superuser…")

    with psycopg.connect(
        host=pg_host,
        port=pg_port,
        user=pg_superuser,
        password=pg_superpass,
        dbname="postgres",
        autocommit=True,
    ) as conn:
        cur = conn.cursor()

        print(f"📦 Criando database '{app_db_name}' (se não existir)…")
        cur.execute("SELECT 1 FROM pg_database WHERE datname = %s;", (app_db_name,))
        if cur.fetchone() is None:
            cur.execute(sql.SQL("CREATE DATABASE {}").format(sql.Identifier(app_db_name)))
            print("   ✔ Database criado.")
        else:
            print("   ✔ Database já existe.")

        print(f"👤 Criando usuário '{app_db_user}' (se não existir)…")
        cur.execute("SELECT 1 FROM pg_roles WHERE rolname = %s;", (app_db_user,))
        statement = "CREATE USER {} WITH PASSWORD {}" if cur.fetchone() is None else "ALTER USER {} WITH PASSWORD {}"
        # DDL não aceita parâmetros %s
        cur.execute(
            sql.SQL(statement).format(sql.Identifier(app_db_user), sql.Literal(app_db_password))
        )
        print("   ✔ Usuário pronto.")

        cur.execute(
            sql.SQL("GRANT ALL PRIVILEGES ON DATABASE {} TO {}").format(
                sql.Identifier(app_db_name),
                sql.Identifier(app_db_user),
            )
        )

    with psycopg.connect(
        host=pg_host,
        port=pg_port,
        user=pg_superuser,
        password=pg_superpass,
        dbname=app_db_name,
        autocommit=True,
    ) as conn_app:
        print("🏗  Ajustando permissões no schema public…")
        conn_app.execute(
            sql.SQL("ALTER SCHEMA public OWNER TO {}").format(sql.Identifier(app_db_user))
        )


def main():
    load_dotenv(".env.appdb.local")

    pg_host = os.getenv("PG_HOST", "localhost")
    pg_port = os.getenv("PG_PORT", "5432")
    pg_superuser = os.getenv("PG_SUPERUSER")
    pg_superpass = os.getenv("PG_SUPERPASS")

    app_db_name = os.getenv("APP_DB_NAME", "app_pricing_db")
    app_db_user = os.getenv("APP_DB_USER", "app_pricing_usr")
    app_db_password = os.getenv("APP_DB_PASSWORD")

    if not all([pg_superuser, pg_superpass, app_db_password]):
        raise RuntimeError("Variáveis de ambiente faltando no .env.appdb.local")

    create_database_and_user(
        pg_host, pg_port, pg_superuser, pg_superpass, app_db_name, app_db_user, app_db_password
    )

    database_url = (
        f"postgresql+psycopg://{app_db_user}:{app_db_password}@{pg_host}:{pg_port}/{app_db_name}"
    )
    print("📐 Criando tabelas de precificação…")
    engine = create_engine(database_url, future=True)
    init_db(engine)

    # primeira leitura grava a configuração padrão
    config = SqlConfigStore(sessionmaker(bind=engine)).get_pricing_config()
    print(f"   ✔ Configuração ativa: margem {config.default_margin}, imposto {config.default_tax_rate}")

    print("\n✅ Banco de precificação configurado com sucesso!")


if __name__ == "__main__":
    main()
