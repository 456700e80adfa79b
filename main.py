import asyncio
from contextlib import AsyncExitStack

import psycopg
from loguru import logger
from psycopg.rows import dict_row

from config.logging import setup_logging
from config.onboarding import OnboardingSettings
from config.postgres import PostgresConfig
from onboarding.address import PlacesClient
from onboarding.backend import HttpIdentityBackend
from onboarding.wizard import WizardController
from persistence.crypto import ChannelCipher
from persistence.encrypted_postgres_saver import EncryptedAsyncPostgresSaver


STEPS = [
    {"givenName": "Jane", "familyName": "Doe", "username": "janedoe42", "email": "jane.doe@gmail.com"},
    {"dateOfBirth": "1990-03-07", "gender": "female"},
    {"password": "Sup3r$ecret", "confirmPassword": "Sup3r$ecret"},
    {"addressLine1": "10 Downing Street", "city": "London", "postalCode": "SW1A 2AA", "countryCode": "GB"},
    {"phoneCountry": "GB", "phoneNational": "07912 345678"},
]


async def open_checkpointer(stack: AsyncExitStack, settings: OnboardingSettings):
    if not PostgresConfig.is_configured():
        logger.info("PG_* not set; running without a checkpointer")
        return None

    pg = PostgresConfig.from_env()
    conn = await stack.enter_async_context(
        await psycopg.AsyncConnection.connect(
            pg.conninfo, autocommit=True, prepare_threshold=0, row_factory=dict_row
        )
    )
    checkpointer = EncryptedAsyncPostgresSaver(
        conn, ChannelCipher.from_env(), encrypt_keys=settings.checkpoint_encrypt_keys
    )
    await checkpointer.setup()
    return checkpointer


async def main():
    settings = OnboardingSettings.from_env()
    setup_logging(settings.log_level)

    async with AsyncExitStack() as stack:
        backend = await stack.enter_async_context(
            HttpIdentityBackend(settings.api_base_url, timeout=settings.http_timeout_s)
        )
        places = PlacesClient(settings.places_api_key, timeout=settings.http_timeout_s)
        stack.push_async_callback(places.close)
        checkpointer = await open_checkpointer(stack, settings)

        wizard = WizardController(
            backend, settings=settings, places=places, checkpointer=checkpointer
        )
        stack.push_async_callback(wizard.close)

        for i, fields in enumerate(STEPS, 1):
            for key, value in fields.items():
                wizard.update_field(key, value)
            if "username" in fields:
                await wizard.checker.drain()

            state = wizard.state if wizard.state.is_last_step else wizard.next()
            print(f"\nSTEP #{i} -> {state.current_step.value}")
            if state.step_errors:
                print("errors:", state.errors_by_field())
                return

        result = await wizard.submit()
        print("\nphase:", wizard.state.phase.value)
        if result.ok:
            print("registered:", result.account.username, result.account.phone_e164)
        else:
            print("submission failed:", result.error)


if __name__ == "__main__":
    asyncio.run(main())
